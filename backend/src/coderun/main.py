"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from coderun.adapters.inbound.rest.routers import (
    execute_router,
    health_router,
    providers_router,
)
from coderun.config import Settings, get_settings
from coderun.dependencies import Container, build_container
from coderun.shared.errors import register_exception_handlers
from coderun.shared.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from coderun.shared.observability import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    container: Container = app.state.container
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        state_backend=settings.state_backend,
        providers=[p.provider_id for p in container.registry],
    )
    yield
    await container.close()
    logger.info("application_shutdown")


def create_app(settings: Settings | None = None, container: Container | None = None) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_settings()
    configure_logging(log_level=settings.log_level, json_logs=settings.is_production)

    app = FastAPI(
        title="Code Execution Service",
        description=(
            "Runs student code snippets on external execution engines with "
            "priority fallback, per-user and per-provider rate limits, and "
            "provider health tracking."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.container = container or build_container(settings)

    # ── Middleware (order matters: last added = outermost) ────
    allow_all_origins = "*" in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all_origins else settings.cors_origins,
        allow_origin_regex=".*" if allow_all_origins else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.prometheus_enabled:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(execute_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)

    return app


def run() -> None:
    """Console entry-point: ``coderun``."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "coderun.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        workers=settings.app_workers,
        log_level=settings.log_level.lower(),
    )
