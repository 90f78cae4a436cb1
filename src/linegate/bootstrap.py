"""Wire the gateway from settings. Called once at startup."""

from __future__ import annotations

from datetime import timedelta

from linegate.auth.credentials import ChannelTokenIssuer, Credential, CredentialManager
from linegate.gateway import PushFallbackNotifier, WebhookGateway
from linegate.infra.time import utc_now
from linegate.outbound.client import LineMessagingApi
from linegate.outbound.dispatcher import OutboundDispatcher, RetryPolicy
from linegate.outbound.rate_limit import RateLimiter
from linegate.routing.commands import build_default_commands
from linegate.routing.router import HandlerSet, Router
from linegate.settings import GatewaySettings

DRY_RUN_TOKEN_LIFETIME = timedelta(days=30)


def _dry_run_issuer() -> Credential:
    now = utc_now()
    return Credential(token="dry-run", issued_at=now, expires_at=now + DRY_RUN_TOKEN_LIFETIME)


def build_gateway(settings: GatewaySettings) -> WebhookGateway:
    """Construct credential manager, limiter, dispatcher, router and gateway."""
    if settings.dry_run:
        issuer = _dry_run_issuer
    else:
        issuer = ChannelTokenIssuer(
            channel_id=settings.channel_id,
            channel_secret=settings.channel_secret,
            base_url=settings.api_base_url,
            timeout=settings.http_timeout,
        )

    credentials = CredentialManager(issuer)
    limiter = RateLimiter(settings.plans, channel=settings.channel_id or "dry-run")
    dispatcher = OutboundDispatcher(
        LineMessagingApi(settings.api_base_url, timeout=settings.http_timeout),
        credentials,
        limiter,
        plan=settings.rate_plan,
        rate_limit_wait=settings.rate_limit_max_wait,
        retry_policy=RetryPolicy(
            base_delay=settings.backoff_base,
            max_delay=settings.backoff_max,
            max_retries=settings.max_retries,
        ),
        dry_run=settings.dry_run,
    )

    def status_lines() -> list[str]:
        window = limiter.window(settings.rate_plan)
        lines = [
            f"plan: {settings.rate_plan} ({window.capacity} calls / {window.window_seconds:g}s)",
            f"remaining: {limiter.remaining(settings.rate_plan)}",
            f"mode: {'dry-run' if settings.dry_run else 'live'}",
        ]
        current = credentials.current
        if current is not None:
            lines.append(f"token valid until: {current.expires_at:%Y-%m-%d %H:%M} UTC")
        return lines

    router = Router(HandlerSet(commands=build_default_commands(status_lines)))

    return WebhookGateway(
        settings.channel_secret,
        router,
        dispatcher,
        fallback=PushFallbackNotifier(dispatcher, settings.support_contact),
        delivery_deadline=settings.delivery_deadline,
        reply_ttl=settings.reply_token_ttl,
        workers=settings.workers,
    )
