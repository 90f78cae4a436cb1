"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response

from linegate.observability.correlation import (
    CORRELATION_ID_HEADER,
    accept_correlation_id,
    correlation_scope,
)

from .routers import public
from .routes import webhooks_line


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    webhooks_line.shutdown_gateway()


def create_app() -> FastAPI:
    """Create FastAPI app with the health and webhook routes.

    The gateway itself is built lazily on the first webhook delivery, so
    the app can be created without LINE configuration.
    """
    app = FastAPI(
        title="linegate",
        docs_url=None,
        redoc_url=None,
        lifespan=_lifespan,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = accept_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response

    app.include_router(public.router)
    app.include_router(webhooks_line.router)

    return app
