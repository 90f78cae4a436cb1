"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Callable

# Injectable clock type: returns a timezone-aware UTC datetime
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_epoch_millis(value: int) -> datetime:
    """Convert provider epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
