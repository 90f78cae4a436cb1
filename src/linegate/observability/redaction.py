"""Redaction helpers for safe logging. All external data must pass through these.

User ids, reply tokens and message text are end-user data: log them only as
hashes (hash_identifier) or lengths, never raw.
"""

import hashlib
import re
from typing import Any

# Patterns that should never appear in logs
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# LINE user/group/room ids: U/C/R followed by 32 hex chars
_LINE_ID_PATTERN = re.compile(r"\b[UCR][0-9a-f]{32}\b")
_BEARER_PATTERN = re.compile(r"Bearer\s+\S+")

_REDACTED = "[REDACTED]"


def hash_identifier(value: str | None) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    if not value:
        return "none"
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def redact_string(value: str) -> str:
    """Redact PII and credential patterns from a string."""
    result = _BEARER_PATTERN.sub(f"Bearer {_REDACTED}", value)
    result = _LINE_ID_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
