"""Outbound dispatcher: validate, rate-limit, authenticate, send, retry.

Security: NEVER log reply tokens, recipients or message text. Only log
hashes, counts and lengths.

Failure classification:
- 400 / 403 / other 4xx: permanent, returned immediately
- 401: one forced credential refresh and one retry, then permanent
- 429 / 5xx / network errors: transient, retried with exponential backoff
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import requests

from linegate.auth.credentials import CredentialManager
from linegate.errors import (
    PermanentSendError,
    ReplyHandleExpired,
    SendFailed,
    TransientSendError,
)
from linegate.events.models import ReplyHandle
from linegate.messages.outbound import OutboundMessage, message_kind, validate_batch
from linegate.observability.correlation import get_correlation_id
from linegate.observability.logging import get_logger
from linegate.observability.redaction import hash_identifier, safe_log_context

from .client import LineMessagingApi, ProviderHTTPError, new_retry_key
from .rate_limit import RateLimiter

logger = get_logger(__name__)

# Max wait for a local rate-limit permit (seconds)
DEFAULT_RATE_LIMIT_WAIT = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with bounded additive jitter.

    Delay for retry n (0-based) is min(max_delay, base * multiplier**n * (1 + jitter * r))
    with r in [0, 1). With jitter < multiplier - 1 consecutive delays strictly
    increase until they reach max_delay.
    """

    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_retries: int = 5
    jitter: float = 0.25

    def minimum_delay(self, retry: int) -> float:
        return min(self.max_delay, self.base_delay * self.multiplier**retry)

    def delay(self, retry: int, rand: float) -> float:
        raw = self.base_delay * self.multiplier**retry
        return min(self.max_delay, raw * (1 + self.jitter * rand))


def _classify(error: ProviderHTTPError) -> Exception:
    status = error.status_code
    if status == 429 or status >= 500:
        return TransientSendError(str(error), status_code=status, retry_after=error.retry_after)
    if status == 400 and "reply token" in error.message.lower():
        return ReplyHandleExpired("provider rejected reply token")
    return PermanentSendError(f"provider rejected request with {status}", status_code=status)


class OutboundDispatcher:
    """Sends outbound messages through the provider API.

    The credential manager and rate limiter are passed in explicitly and
    shared by every dispatch of the channel.
    """

    def __init__(
        self,
        api: LineMessagingApi,
        credentials: CredentialManager,
        rate_limiter: RateLimiter,
        *,
        plan: str = "standard",
        rate_limit_wait: float = DEFAULT_RATE_LIMIT_WAIT,
        retry_policy: RetryPolicy | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        rate_limiter.window(plan)  # fail fast on unknown plan
        self._api = api
        self._credentials = credentials
        self._rate_limiter = rate_limiter
        self._plan = plan
        self._rate_limit_wait = rate_limit_wait
        self._policy = retry_policy or RetryPolicy()
        self._dry_run = dry_run
        self._sleep = sleep
        self._rand = rand
        self.dry_run_log: list[dict[str, Any]] = []

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def plan(self) -> str:
        return self._plan

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    def backoff_delay(self, retry: int) -> float:
        return self._policy.delay(retry, self._rand())

    def send(self, reply_handle: ReplyHandle | None, messages: Sequence[OutboundMessage]) -> None:
        """Reply to an event.

        Raises:
            ValidationError: If any message is invalid (nothing is sent).
            ReplyHandleConsumed / ReplyHandleExpired: Handle unusable.
            RateLimited: No local rate-limit permit within the wait.
            PermanentSendError: Provider rejected the call.
            SendFailed: Transient failures exhausted every retry.
            CredentialRefreshFailed: Token could not be obtained.
        """
        messages = list(messages)
        validate_batch(messages)
        if reply_handle is None:
            raise PermanentSendError("event carries no reply handle")

        payloads = [message.to_payload() for message in messages]
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            reply_hash=hash_identifier(reply_handle.token),
            message_count=len(messages),
            kinds=",".join(message_kind(m) for m in messages),
            provider="line",
        )

        if self._dry_run:
            reply_handle.consume()
            self.dry_run_log.append({"endpoint": "reply", "messages": payloads})
            logger.info("dry-run reply recorded", extra={"extra_fields": log_ctx})
            return

        # Handle is consumed only after a rate permit is held
        self._deliver(
            lambda token: self._api.reply(reply_handle.token, payloads, token),
            log_ctx,
            before_attempt=reply_handle.ensure_valid,
            on_admitted=reply_handle.consume,
        )

    def push(self, to: str, messages: Sequence[OutboundMessage]) -> None:
        """Push messages to a user, group or room outside of a reply.

        Raises the same errors as send(), minus the reply handle ones.
        """
        messages = list(messages)
        validate_batch(messages)
        if not to:
            raise PermanentSendError("push needs a recipient")

        payloads = [message.to_payload() for message in messages]
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            to_hash=hash_identifier(to),
            message_count=len(messages),
            kinds=",".join(message_kind(m) for m in messages),
            provider="line",
        )

        if self._dry_run:
            self.dry_run_log.append({"endpoint": "push", "to": to, "messages": payloads})
            logger.info("dry-run push recorded", extra={"extra_fields": log_ctx})
            return

        # Same key for every attempt so the provider can drop duplicates
        retry_key = new_retry_key()
        self._deliver(
            lambda token: self._api.push(to, payloads, token, retry_key=retry_key),
            log_ctx,
            accept_conflict=True,
        )

    def _deliver(
        self,
        call: Callable[[str], None],
        log_ctx: dict[str, str],
        before_attempt: Callable[[], None] | None = None,
        on_admitted: Callable[[], None] | None = None,
        accept_conflict: bool = False,
    ) -> None:
        retries = 0
        auth_retried = False
        admitted = False

        logger.info("sending outbound message", extra={"extra_fields": log_ctx})

        while True:
            if before_attempt is not None:
                before_attempt()

            self._rate_limiter.acquire(self._plan, self._rate_limit_wait)
            if not admitted:
                admitted = True
                if on_admitted is not None:
                    on_admitted()
            credential = self._credentials.get_token()

            try:
                call(credential.token)
                logger.info(
                    "outbound message sent",
                    extra={"extra_fields": safe_log_context(**log_ctx, retries=retries)},
                )
                return
            except ProviderHTTPError as e:
                if e.status_code == 401:
                    if auth_retried:
                        logger.error(
                            "outbound send rejected after credential refresh",
                            extra={"extra_fields": safe_log_context(**log_ctx, status=401)},
                        )
                        raise PermanentSendError(
                            "provider rejected credential after refresh", status_code=401
                        ) from e
                    auth_retried = True
                    logger.warning(
                        "outbound send unauthorized, refreshing credential",
                        extra={"extra_fields": safe_log_context(**log_ctx, status=401)},
                    )
                    self._credentials.force_refresh(stale=credential)
                    continue

                if e.status_code == 409 and accept_conflict:
                    # Retry key already accepted by the provider
                    logger.info(
                        "outbound push already accepted",
                        extra={"extra_fields": safe_log_context(**log_ctx, retries=retries)},
                    )
                    return

                classified = _classify(e)
                if not isinstance(classified, TransientSendError):
                    logger.error(
                        "outbound send failed permanently",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx,
                                status=e.status_code,
                                error_type=type(classified).__name__,
                            )
                        },
                    )
                    raise classified from e
                transient: TransientSendError = classified
                cause: Exception = e
            except requests.RequestException as e:
                transient = TransientSendError(f"network error: {type(e).__name__}")
                cause = e

            if retries >= self._policy.max_retries:
                logger.error(
                    "outbound send failed, retries exhausted",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx,
                            attempts=retries + 1,
                            status=transient.status_code,
                            error_type=type(cause).__name__,
                        )
                    },
                )
                transient.__cause__ = cause
                raise SendFailed(
                    f"outbound send failed after {retries + 1} attempts", attempts=retries + 1
                ) from transient

            delay = self.backoff_delay(retries)
            if transient.retry_after is not None:
                delay = min(max(delay, transient.retry_after), self._policy.max_delay)

            logger.warning(
                "outbound send failed, retrying",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        retry=retries,
                        delay=round(delay, 3),
                        status=transient.status_code,
                        error_type=type(cause).__name__,
                    )
                },
            )
            self._sleep(delay)
            retries += 1
