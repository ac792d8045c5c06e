"""
BuFood API Gateway — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() resolves settings once, builds the
       framework-free policies (origin, admission, response cache), the
       lifecycle manager, the ordered middleware pipeline, the exception
       handlers and the routes.
Who:   `gateway.server` (python -m gateway) or uvicorn (gateway.main:app).

Application Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                        FastAPI App                          │
    │                                                             │
    │  Pipeline (gateway.pipeline.build_middleware):              │
    │  Context → Origin → CORS → Headers → GZip → Body → Admission│
    │                                        → Response cache     │
    │                                                             │
    │  Routes:                                                    │
    │  GET /health │ GET / │ GET /api-docs │ /api/* (external)    │
    │                                                             │
    │  app.state.lifecycle: store + cache connections             │
    └─────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → configuration check → cache → store (+ maintenance)
    Shutdown: stop admission → close cache → close store
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import APIRouter, FastAPI

from gateway import __version__
from gateway.admission import AdmissionController
from gateway.cache import ResponseCache
from gateway.config import Settings
from gateway.error_handlers import register_exception_handlers
from gateway.lifecycle import LifecycleManager
from gateway.logging_config import setup_logging
from gateway.middleware.origin import OriginPolicy
from gateway.pipeline import build_middleware
from gateway.routes import health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    lifecycle: LifecycleManager = app.state.lifecycle

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("BuFood API gateway starting up (%s mode)...", settings.environment)

    try:
        settings.validate_required()
    except ValueError as e:
        # Keep serving: /health reports the degraded state
        logger.error("Configuration error: %s", str(e))

    await lifecycle.startup()

    logger.info("Server started on port %d", settings.port)
    logger.info("API Documentation available at http://localhost:%d/api-docs", settings.port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    await lifecycle.shutdown()


def create_app(
    settings: Optional[Settings] = None,
    *,
    routers: Iterable[APIRouter] = (),
    lifecycle: Optional[LifecycleManager] = None,
    admission: Optional[AdmissionController] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:  Resolved configuration; read from the environment if omitted.
        routers:   The platform's route handlers, mounted after the gateway routes.
        lifecycle: Pre-built lifecycle manager (tests inject fakes here).
        admission: Pre-built admission controller (tests inject a clock here).
    """
    settings = settings or Settings()

    response_cache = (
        lifecycle.response_cache
        if lifecycle is not None
        else ResponseCache(ttl=settings.cache_ttl_seconds, prefixes=settings.cache_prefixes_list)
    )
    lifecycle = lifecycle or LifecycleManager.from_settings(settings, response_cache)
    admission = admission or AdmissionController.from_settings(settings)
    origin_policy = OriginPolicy.from_settings(settings)

    app = FastAPI(
        title="BuFood API",
        description="API gateway for the BuFood multi-tenant food-ordering platform.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url=None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
        middleware=build_middleware(
            settings,
            lifecycle=lifecycle,
            admission=admission,
            response_cache=response_cache,
            origin_policy=origin_policy,
        ),
    )
    app.state.settings = settings
    app.state.lifecycle = lifecycle
    app.state.admission = admission

    register_exception_handlers(app, settings)

    app.include_router(health.router)
    for router in routers:
        app.include_router(router)

    return app


app = create_app()
