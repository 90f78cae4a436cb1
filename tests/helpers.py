"""Shared test helper functions for linegate tests.

This module contains helpers that can be imported by both conftest.py
and individual test files. These are NOT fixtures - they are regular
functions and small fakes.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from linegate.auth.credentials import Credential, CredentialManager
from linegate.outbound.dispatcher import OutboundDispatcher, RetryPolicy
from linegate.outbound.rate_limit import RateLimiter, RateLimitWindow
from linegate.webhook.signature import compute_signature

CHANNEL_SECRET = "test-channel-secret"
USER_ID = "U" + "0" * 32
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class MonotonicClock:
    """Settable monotonic clock whose sleep advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeApi:
    """Stands in for LineMessagingApi; plays a script of outcomes per call.

    Each script entry is None (success) or an exception to raise.
    """

    def __init__(self, script: list[Exception | None] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def _next(self, call: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append(call)
            outcome = self.script.pop(0) if self.script else None
        if outcome is not None:
            raise outcome

    def reply(self, reply_token: str, payloads: list[dict], access_token: str) -> None:
        self._next({"endpoint": "reply", "reply_token": reply_token, "messages": payloads, "token": access_token})

    def push(self, to: str, payloads: list[dict], access_token: str, retry_key: str | None = None) -> None:
        self._next({"endpoint": "push", "to": to, "messages": payloads, "token": access_token, "retry_key": retry_key})


class CountingIssuer:
    """Token issuer returning token-1, token-2, ... valid for one day."""

    def __init__(self, clock: FakeClock, lifetime: timedelta = timedelta(days=1)) -> None:
        self.clock = clock
        self.lifetime = lifetime
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self) -> Credential:
        with self._lock:
            self.count += 1
            n = self.count
        now = self.clock()
        return Credential(token=f"token-{n}", issued_at=now, expires_at=now + self.lifetime)


def make_dispatcher(
    api: FakeApi | None = None,
    *,
    clock: FakeClock | None = None,
    max_retries: int = 5,
    dry_run: bool = False,
    plans: dict[str, RateLimitWindow] | None = None,
    sleep: RecordingSleep | None = None,
) -> tuple[OutboundDispatcher, FakeApi, CredentialManager, RecordingSleep]:
    """Dispatcher wired to fakes; jitter random fixed at 0."""
    clock = clock or FakeClock()
    api = api or FakeApi()
    sleep = sleep or RecordingSleep()
    credentials = CredentialManager(CountingIssuer(clock), clock=clock, sleep=sleep)
    limiter = RateLimiter(plans or {"standard": RateLimitWindow(1000, 60)})
    dispatcher = OutboundDispatcher(
        api,
        credentials,
        limiter,
        retry_policy=RetryPolicy(max_retries=max_retries),
        dry_run=dry_run,
        sleep=sleep,
        rand=lambda: 0.0,
    )
    return dispatcher, api, credentials, sleep


def webhook_body(*events: dict[str, Any], destination: str = "Ubot") -> bytes:
    return json.dumps({"destination": destination, "events": list(events)}).encode()


def text_event(text: str, reply_token: str = "rt1", user_id: str = USER_ID) -> dict[str, Any]:
    return {
        "type": "message",
        "mode": "active",
        "timestamp": 1767268800000,
        "webhookEventId": "01HTEST",
        "deliveryContext": {"isRedelivery": False},
        "source": {"type": "user", "userId": user_id},
        "replyToken": reply_token,
        "message": {"id": "m1", "type": "text", "text": text},
    }


def sign(body: bytes, secret: str = CHANNEL_SECRET) -> str:
    return compute_signature(body, secret)
