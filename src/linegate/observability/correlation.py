"""Correlation IDs tying a webhook delivery to its log lines and sends."""

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

# Copied into gateway worker threads with contextvars.copy_context()
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Caller-supplied ids end up in every JSON log line of the delivery
_ACCEPTED_ID = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def accept_correlation_id(value: str | None) -> str:
    """Return value if it is a safe header id, else a freshly generated one."""
    if value and _ACCEPTED_ID.fullmatch(value):
        return value
    return generate_correlation_id()


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind cid (or a new id when empty) for the duration of the block."""
    cid = cid or generate_correlation_id()
    token = set_correlation_id(cid)
    try:
        yield cid
    finally:
        reset_correlation_id(token)
