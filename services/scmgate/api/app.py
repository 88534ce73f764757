"""
FastAPI application factory for the scmgate API server.

Uses lifespan handler for startup/shutdown of the provider registry.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scmgate.api.dependencies import init_resolver
from scmgate.config import settings
from scmgate.logging_config import configure_logging, get_logger
from scmgate.scm import close_registry, init_registry

from .health import router as health_router
from .routers.repositories import router as repositories_router
from .routers.tools import router as tools_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    configure_logging(
        json_logs=settings.json_logs,
        log_level=settings.log_level,
        app_name=settings.app_name,
    )
    logger.info("Starting scmgate API server", version="0.1.0")

    await init_registry()
    init_resolver()

    yield

    logger.info("Shutting down scmgate API server")
    await close_registry()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Vendor-agnostic source control operations",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Ensure every request has a request ID for logging correlation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    app.include_router(tools_router, prefix=settings.api_prefix)
    app.include_router(repositories_router, prefix=settings.api_prefix)

    return app


app = create_application()
