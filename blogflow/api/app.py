"""
FastAPI application factory.

Usage::

    uvicorn blogflow.api.app:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from blogflow import __version__
from blogflow.api import routes_admin, routes_publishing, routes_sessions, routes_versions
from blogflow.api.envelope import install_error_handlers
from blogflow.config import get_settings
from blogflow.database import get_db
from blogflow.logging import LogComponent, LogLevel, get_logger, init_logger
from blogflow.services import Services, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to Supabase and start the workflow logger, unless services
    were injected (tests)."""
    if app.state.services is None:
        settings = get_settings()
        db = await get_db()
        init_logger(
            log_dir=settings.log_dir,
            db=db,
            min_level=LogLevel.from_name(settings.db_log_min_level),
        )
        app.state.services = build_services(db, settings)
        await get_logger().info(LogComponent.STARTUP, "API started", data={"version": __version__})
        logger.info("[API] Application startup complete")

    yield

    await get_logger().flush()
    logger.info("[API] Application shutdown complete")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the API application.

    Args:
        services: Pre-built services.  When ``None`` they are created
            from the environment at startup.
    """
    app = FastAPI(
        title="blogflow",
        description="Content versioning, collaborative editing and publishing workflow",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    install_error_handlers(app)

    app.include_router(routes_versions.router)
    app.include_router(routes_sessions.router)
    app.include_router(routes_publishing.router)
    app.include_router(routes_admin.router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"success": True, "data": {"status": "ok", "version": __version__}}

    return app


__all__ = ["create_app", "lifespan"]
