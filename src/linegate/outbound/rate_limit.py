"""Sliding-window rate limiter for outbound provider calls.

One limiter is shared by every outbound call of a channel. Acquisition is
check-and-record under a single lock, so concurrent callers can never be
admitted past the window capacity.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from linegate.errors import ConfigurationError, RateLimited
from linegate.observability.logging import get_logger
from linegate.observability.redaction import safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitWindow:
    """Plan capacity: at most `capacity` calls in any `window_seconds` span."""

    capacity: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.capacity < 1 or self.window_seconds <= 0:
            raise ConfigurationError("rate limit plan needs capacity >= 1 and a positive window")

    @classmethod
    def parse(cls, spec: str) -> "RateLimitWindow":
        """Parse "capacity/seconds", e.g. "1000/60"."""
        try:
            capacity, seconds = spec.split("/", 1)
            return cls(capacity=int(capacity), window_seconds=float(seconds))
        except ValueError as e:
            raise ConfigurationError(f"invalid rate limit plan {spec!r}, expected capacity/seconds") from e


# Plan tiers; overridable via LINEGATE_PLAN_<NAME>
DEFAULT_PLANS: dict[str, RateLimitWindow] = {
    "standard": RateLimitWindow(capacity=1000, window_seconds=60),
    "business": RateLimitWindow(capacity=5000, window_seconds=60),
    "enterprise": RateLimitWindow(capacity=20000, window_seconds=60),
}


class RateLimiter:
    """Per-channel sliding-window counter keyed by plan name."""

    def __init__(
        self,
        plans: dict[str, RateLimitWindow] | None = None,
        channel: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._plans = dict(plans if plans is not None else DEFAULT_PLANS)
        self._channel = channel
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._calls: dict[str, deque[float]] = {}

    @property
    def plans(self) -> dict[str, RateLimitWindow]:
        return dict(self._plans)

    def window(self, plan: str) -> RateLimitWindow:
        try:
            return self._plans[plan]
        except KeyError:
            raise ConfigurationError(f"unknown rate limit plan {plan!r}") from None

    def _prune(self, plan: str, now: float) -> deque[float]:
        window = self.window(plan)
        calls = self._calls.setdefault(plan, deque())
        cutoff = now - window.window_seconds
        while calls and calls[0] <= cutoff:
            calls.popleft()
        return calls

    def _try_acquire_locked(self, plan: str) -> tuple[bool, float]:
        """Admit one call if capacity allows. Returns (admitted, seconds until a slot frees)."""
        now = self._clock()
        calls = self._prune(plan, now)
        window = self.window(plan)
        if len(calls) < window.capacity:
            calls.append(now)
            return True, 0.0
        return False, max(calls[0] + window.window_seconds - now, 0.0)

    def try_acquire(self, plan: str) -> bool:
        """Admit one call without waiting."""
        with self._lock:
            admitted, _ = self._try_acquire_locked(plan)
        return admitted

    def acquire(self, plan: str, max_wait: float) -> None:
        """Admit one call, waiting up to max_wait seconds for a slot.

        Raises:
            RateLimited: If no slot frees within max_wait.
        """
        deadline = self._clock() + max_wait
        while True:
            with self._lock:
                admitted, retry_in = self._try_acquire_locked(plan)
            if admitted:
                return

            remaining = deadline - self._clock()
            if remaining <= 0 or retry_in > remaining:
                logger.warning(
                    "outbound rate limit wait exceeded",
                    extra={
                        "extra_fields": safe_log_context(
                            channel=self._channel, plan=plan, max_wait=max_wait
                        )
                    },
                )
                raise RateLimited(f"rate limit for plan {plan!r} not available within {max_wait}s")

            self._sleep(retry_in)

    def remaining(self, plan: str) -> int:
        """Calls still admissible in the current window."""
        with self._lock:
            calls = self._prune(plan, self._clock())
            return self.window(plan).capacity - len(calls)
