"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from wagate.errors import GatewayError
from wagate.gateway import Gateway, build_gateway
from wagate.observability.correlation import (
    CORRELATION_ID_HEADER,
    accept_correlation_id,
    correlation_scope,
)
from wagate.observability.crash import install_crash_handler
from wagate.observability.logging import get_logger

from .routes import public, send, sessions

logger = get_logger(__name__)


def create_app(gateway: Gateway | None = None, *, crash_policy: bool = True) -> FastAPI:
    """Create the gateway app.

    Args:
        gateway: Prebuilt gateway. If None, one is built from the environment
                 when the app starts.
        crash_policy: Install the loop exception handler on start-up.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if crash_policy:
            install_crash_handler(asyncio.get_running_loop())
        if getattr(app.state, "gateway", None) is None:
            app.state.gateway = build_gateway()
        gw: Gateway = app.state.gateway

        if gw.settings.restore_sessions:
            await gw.lifecycle.restore_sessions()
        try:
            yield
        finally:
            logger.info("shutting down, stopping clients")
            await gw.lifecycle.close_all()

    app = FastAPI(
        title="wagate",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = accept_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "request failed",
                extra={"extra_fields": {"error_type": type(exc).__name__, "path": request.url.path}},
            )
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "message": str(exc)}
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = sorted(
            {".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()} - {""}
        )
        message = f"invalid request: {', '.join(fields)}" if fields else "invalid request"
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    app.include_router(public.router)
    app.include_router(sessions.router)
    app.include_router(send.router)

    return app
