"""Gateway configuration loaded from environment variables.

Required:
- LINE_CHANNEL_SECRET: channel secret (webhook signatures, token issuing)
- LINE_CHANNEL_ID: channel id (token issuing; optional in dry-run mode)

Optional:
- LINE_API_BASE_URL (default: https://api.line.me)
- LINEGATE_RATE_PLAN (default: standard)
- LINEGATE_PLAN_<NAME>: "capacity/seconds" override or additional plan
- LINEGATE_DRY_RUN (default: false)
- LINEGATE_DELIVERY_DEADLINE_SECONDS (default: 10)
- LINEGATE_REPLY_TOKEN_TTL_SECONDS (default: 60)
- LINEGATE_RATE_LIMIT_MAX_WAIT_SECONDS (default: 2)
- LINEGATE_MAX_RETRIES (default: 5)
- LINEGATE_BACKOFF_BASE_SECONDS (default: 0.5)
- LINEGATE_BACKOFF_MAX_SECONDS (default: 30)
- LINEGATE_HTTP_TIMEOUT_SECONDS (default: 5)
- LINEGATE_WORKERS (default: 8)
- LINEGATE_SUPPORT_CONTACT (default: empty)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from linegate.errors import ConfigurationError
from linegate.outbound.rate_limit import DEFAULT_PLANS, RateLimitWindow

_PLAN_PREFIX = "LINEGATE_PLAN_"
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class GatewaySettings:
    channel_secret: str
    channel_id: str = ""
    api_base_url: str = "https://api.line.me"
    rate_plan: str = "standard"
    plans: dict[str, RateLimitWindow] = field(default_factory=lambda: dict(DEFAULT_PLANS))
    dry_run: bool = False
    delivery_deadline: float = 10.0
    reply_token_ttl: float = 60.0
    rate_limit_max_wait: float = 2.0
    max_retries: int = 5
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    http_timeout: float = 5.0
    workers: int = 8
    support_contact: str = ""

    def __post_init__(self) -> None:
        if not self.channel_secret:
            raise ConfigurationError("Missing LINE config: LINE_CHANNEL_SECRET required")
        if not self.dry_run and not self.channel_id:
            raise ConfigurationError("Missing LINE config: LINE_CHANNEL_ID required unless dry-run")
        if self.rate_plan not in self.plans:
            raise ConfigurationError(f"unknown rate plan {self.rate_plan!r}")
        if self.max_retries < 0 or self.workers < 1:
            raise ConfigurationError("max_retries must be >= 0 and workers >= 1")
        if min(self.delivery_deadline, self.reply_token_ttl, self.http_timeout) <= 0:
            raise ConfigurationError("deadlines and timeouts must be positive")

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks
        return (
            f"GatewaySettings(channel_id={self.channel_id!r}, rate_plan={self.rate_plan!r}, "
            f"dry_run={self.dry_run})"
        )


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _plans(env: Mapping[str, str]) -> dict[str, RateLimitWindow]:
    plans = dict(DEFAULT_PLANS)
    for key, value in env.items():
        if key.startswith(_PLAN_PREFIX) and value:
            plans[key[len(_PLAN_PREFIX):].lower()] = RateLimitWindow.parse(value)
    return plans


def load_settings(env: Mapping[str, str] | None = None) -> GatewaySettings:
    """Build GatewaySettings from the environment.

    Raises:
        ConfigurationError: On missing or invalid values.
    """
    env = os.environ if env is None else env

    return GatewaySettings(
        channel_secret=env.get("LINE_CHANNEL_SECRET", ""),
        channel_id=env.get("LINE_CHANNEL_ID", ""),
        api_base_url=env.get("LINE_API_BASE_URL") or "https://api.line.me",
        rate_plan=(env.get("LINEGATE_RATE_PLAN") or "standard").lower(),
        plans=_plans(env),
        dry_run=env.get("LINEGATE_DRY_RUN", "").strip().lower() in _TRUE_VALUES,
        delivery_deadline=_float(env, "LINEGATE_DELIVERY_DEADLINE_SECONDS", 10.0),
        reply_token_ttl=_float(env, "LINEGATE_REPLY_TOKEN_TTL_SECONDS", 60.0),
        rate_limit_max_wait=_float(env, "LINEGATE_RATE_LIMIT_MAX_WAIT_SECONDS", 2.0),
        max_retries=_int(env, "LINEGATE_MAX_RETRIES", 5),
        backoff_base=_float(env, "LINEGATE_BACKOFF_BASE_SECONDS", 0.5),
        backoff_max=_float(env, "LINEGATE_BACKOFF_MAX_SECONDS", 30.0),
        http_timeout=_float(env, "LINEGATE_HTTP_TIMEOUT_SECONDS", 5.0),
        workers=_int(env, "LINEGATE_WORKERS", 8),
        support_contact=env.get("LINEGATE_SUPPORT_CONTACT", ""),
    )
