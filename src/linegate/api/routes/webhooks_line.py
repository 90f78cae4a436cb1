"""LINE webhook route.

Status mapping:
- 200: signature valid, body parsed, events accepted for processing
- 401: signature verification failed (nothing decoded or routed)
- 400: body is not a JSON object with an events array

Security: the body holds user ids and message text. Log only counts,
hashes and error types.
"""

from __future__ import annotations

import threading

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from linegate.bootstrap import build_gateway
from linegate.gateway import WebhookGateway
from linegate.observability.correlation import get_correlation_id
from linegate.observability.logging import get_logger
from linegate.observability.redaction import safe_log_context
from linegate.settings import load_settings
from linegate.webhook.signature import SIGNATURE_HEADER

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)

_gateway: WebhookGateway | None = None
_gateway_lock = threading.Lock()


class WebhookAck(BaseModel):
    """Response body for webhook deliveries."""

    status: str
    accepted: int = 0
    rejected: int = 0
    completed: bool = True


def _get_gateway() -> WebhookGateway:
    """Get the process-wide gateway, building it on first use (allows test injection)."""
    global _gateway

    with _gateway_lock:
        if _gateway is None:
            _gateway = build_gateway(load_settings())
        return _gateway


def shutdown_gateway() -> None:
    global _gateway

    with _gateway_lock:
        if _gateway is not None:
            _gateway.shutdown(wait=False)
            _gateway = None


@router.post("/line")
async def line_webhook(
    request: Request,
    x_line_signature: str | None = Header(None, alias=SIGNATURE_HEADER),
) -> JSONResponse:
    """Receive a LINE webhook delivery.

    The raw body bytes are verified exactly as received; the same bytes
    are decoded afterwards (no re-serialization).
    """
    body_bytes = await request.body()
    gateway = _get_gateway()

    result = await run_in_threadpool(gateway.handle, body_bytes, x_line_signature)

    if result.status_code != 200:
        logger.info(
            "line webhook rejected",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    status=result.status_code,
                    error_type=type(result.error).__name__,
                )
            },
        )
        status = "invalid signature" if result.status_code == 401 else "invalid body"
        return JSONResponse(
            status_code=result.status_code,
            content=WebhookAck(status=status).model_dump(),
        )

    ack = WebhookAck(
        status="ok",
        accepted=len(result.events),
        rejected=len(result.decode_errors),
        completed=result.completed,
    )
    return JSONResponse(status_code=200, content=ack.model_dump())
