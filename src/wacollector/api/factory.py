"""FastAPI application factory for the control surface."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wacollector.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wacollector.runtime import Runtime

from .deps import ADMIN_SECRET_HEADER
from .routes import instance, webhooks_evolution


def _error_code(detail: object) -> str:
    """'Not Found' -> 'not_found'."""
    if isinstance(detail, str) and detail:
        return detail.strip().lower().replace(" ", "_")
    return "error"


def create_app(runtime: Runtime, *, manage_session: bool = True) -> FastAPI:
    """Create the control app around ``runtime``.

    Args:
        runtime: Wired process components.
        manage_session: Start the connection controller on startup and stop
            it on shutdown. Tests that drive the controller themselves pass False.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_session:
            await runtime.controller.start()
        try:
            yield
        finally:
            if manage_session:
                await runtime.controller.stop()

    app = FastAPI(
        title="wa-collector",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(runtime.settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", ADMIN_SECRET_HEADER],
        max_age=600,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": _error_code(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        """Health check endpoint."""
        return "ok"

    app.include_router(instance.router)
    app.include_router(webhooks_evolution.router)

    return app
