"""Public-facing routes: liveness and configuration readiness."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from linegate.errors import ConfigurationError
from linegate.observability.logging import get_logger
from linegate.observability.redaction import safe_log_context
from linegate.settings import load_settings

router = APIRouter()

logger = get_logger(__name__)


@router.get("/health")
def health() -> dict:
    """Liveness: the process is serving requests."""
    return {"status": "ok"}


@router.get("/health/ready")
def ready() -> JSONResponse:
    """Readiness: LINE configuration loads, so webhooks can be handled.

    Does not build the gateway or contact the provider.
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.warning(
            "readiness check failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return JSONResponse(status_code=503, content={"status": "not configured"})

    return JSONResponse(
        status_code=200,
        content={
            "status": "ready",
            "mode": "dry-run" if settings.dry_run else "live",
            "plan": settings.rate_plan,
        },
    )
