"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers, and
the reaper lifecycle) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import admin_router, health_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import build_reaper, get_admission_gate

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the idle-record reaper for the lifetime of the application."""

    reaper = build_reaper(get_admission_gate(), settings.admission)
    reaper.start()
    app.state.reaper = reaper
    try:
        yield
    finally:
        await reaper.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Gate API",
        description=(
            "Adaptive request admission: per-category quotas (fixed window with "
            "violation hangover) escalated by a behavioural suspicion score. "
            "Requests are admitted, delayed, or rejected with HTTP 429 and "
            "Retry-After."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.created",
        extra={
            "app_env": settings.app_env,
            "admission_enabled": settings.admission.enabled,
        },
    )
    return app
