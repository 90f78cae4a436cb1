"""Channel access token management.

The credential is the only cross-request mutable state in the gateway.
Readers share the cached token without blocking each other; a refresh is
serialized so concurrent callers that see an expiring token wait on a
single in-flight refresh instead of issuing their own.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

import requests

from linegate.errors import ConfigurationError, CredentialRefreshFailed
from linegate.infra.time import Clock, utc_now
from linegate.observability.logging import get_logger
from linegate.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Safety margin floor and fraction of the total validity
MIN_SAFETY_MARGIN = timedelta(hours=1)
SAFETY_MARGIN_FRACTION = 0.10

# Refresh attempts before escalating to CredentialRefreshFailed
DEFAULT_REFRESH_ATTEMPTS = 3
REFRESH_RETRY_DELAY = 0.5

TOKEN_PATH = "/v2/oauth/accessToken"


@dataclass(frozen=True)
class Credential:
    """Channel access token and its validity window."""

    token: str
    issued_at: datetime
    expires_at: datetime

    @property
    def lifetime(self) -> timedelta:
        return self.expires_at - self.issued_at

    def __repr__(self) -> str:
        return (
            f"Credential(issued_at={self.issued_at.isoformat()}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


class TokenIssuer(Protocol):
    """Anything that can mint a fresh Credential."""

    def __call__(self) -> Credential:
        ...


def default_safety_margin(credential: Credential) -> timedelta:
    """10% of total validity or 1 hour, whichever is larger."""
    return max(credential.lifetime * SAFETY_MARGIN_FRACTION, MIN_SAFETY_MARGIN)


class ChannelTokenIssuer:
    """Issues short-lived channel access tokens via client credentials.

    POST {base_url}/v2/oauth/accessToken
      grant_type=client_credentials&client_id=...&client_secret=...
    -> {"access_token": "...", "expires_in": 2592000, "token_type": "Bearer"}
    """

    def __init__(
        self,
        channel_id: str,
        channel_secret: str,
        base_url: str = "https://api.line.me",
        timeout: float = 10,
        session: requests.Session | None = None,
        clock: Clock = utc_now,
    ) -> None:
        if not channel_id or not channel_secret:
            raise ConfigurationError(
                "Missing LINE config: LINE_CHANNEL_ID and LINE_CHANNEL_SECRET required"
            )
        self._channel_id = channel_id
        self._channel_secret = channel_secret
        self._url = f"{base_url.rstrip('/')}{TOKEN_PATH}"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock

    def __call__(self) -> Credential:
        """Request a new token.

        Raises:
            requests.RequestException: On network or HTTP errors.
            ValueError: If the response body is not a token response.
        """
        issued_at = self._clock()
        response = self._session.post(
            self._url,
            data={
                "grant_type": "client_credentials",
                "client_id": self._channel_id,
                "client_secret": self._channel_secret,
            },
            timeout=self._timeout,
        )
        response.raise_for_status()
        body = response.json()

        token = body.get("access_token")
        expires_in = body.get("expires_in")
        if not isinstance(token, str) or not isinstance(expires_in, int):
            raise ValueError("token response missing access_token or expires_in")

        return Credential(
            token=token,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
        )


class CredentialManager:
    """Holds the current Credential and refreshes it before expiry.

    Constructed once at startup and passed explicitly to the outbound
    dispatcher; never a module-level singleton.
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        *,
        safety_margin: timedelta | None = None,
        refresh_attempts: int = DEFAULT_REFRESH_ATTEMPTS,
        retry_delay: float = REFRESH_RETRY_DELAY,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        initial: Credential | None = None,
    ) -> None:
        if refresh_attempts < 1:
            raise ConfigurationError("refresh_attempts must be at least 1")
        self._issuer = issuer
        self._safety_margin = safety_margin
        self._refresh_attempts = refresh_attempts
        self._retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep
        self._credential = initial
        self._refresh_lock = threading.Lock()
        self._refresh_count = 0

    @property
    def refresh_count(self) -> int:
        """Number of successful refreshes performed (for status and tests)."""
        return self._refresh_count

    @property
    def current(self) -> Credential | None:
        return self._credential

    def safety_margin_for(self, credential: Credential) -> timedelta:
        """Margin for credential, capped at half its lifetime."""
        margin = self._safety_margin if self._safety_margin is not None else default_safety_margin(credential)
        return min(margin, credential.lifetime / 2)

    def _is_fresh(self, credential: Credential | None) -> bool:
        if credential is None:
            return False
        return credential.expires_at > self._clock() + self.safety_margin_for(credential)

    def get_token(self) -> Credential:
        """Return a credential whose remaining lifetime exceeds the safety margin.

        Raises:
            CredentialRefreshFailed: If a needed refresh fails on every attempt.
        """
        credential = self._credential
        if self._is_fresh(credential):
            return credential  # type: ignore[return-value]

        with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock
            credential = self._credential
            if self._is_fresh(credential):
                return credential  # type: ignore[return-value]
            return self._refresh_locked()

    def force_refresh(self, stale: Credential | None = None) -> Credential:
        """Refresh regardless of the cached token's remaining lifetime.

        Args:
            stale: The credential the caller saw rejected. If another caller
                already replaced it, the newer credential is returned without
                a second refresh.

        Raises:
            CredentialRefreshFailed: If the refresh fails on every attempt.
        """
        with self._refresh_lock:
            if stale is not None and self._credential is not None and self._credential is not stale:
                return self._credential
            return self._refresh_locked()

    def _refresh_locked(self) -> Credential:
        last_error: Exception | None = None

        for attempt in range(self._refresh_attempts):
            try:
                credential = self._issuer()
            except (requests.RequestException, ValueError) as e:
                last_error = e
                logger.warning(
                    "credential refresh failed",
                    extra={
                        "extra_fields": safe_log_context(
                            attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                if attempt + 1 < self._refresh_attempts:
                    self._sleep(self._retry_delay * (2**attempt))
                continue

            self._credential = credential
            self._refresh_count += 1
            logger.info(
                "credential refreshed",
                extra={
                    "extra_fields": safe_log_context(
                        attempt=attempt,
                        lifetime_seconds=int(credential.lifetime.total_seconds()),
                    )
                },
            )
            return credential

        logger.error(
            "credential refresh exhausted, rotate channel secret",
            extra={
                "extra_fields": safe_log_context(
                    attempts=self._refresh_attempts,
                    error_type=type(last_error).__name__,
                )
            },
        )
        raise CredentialRefreshFailed(
            f"credential refresh failed after {self._refresh_attempts} attempts"
        ) from last_error
