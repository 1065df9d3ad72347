"""
vidmem Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures exception handling, and provides a test-friendly application
factory.

Design Goals
------------
- Centralized router registration
- Encoder state rejections reported with their reason code
- Global exception safety net
- Sessions stopped (and builds cancelled) on shutdown
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from fastapi import FastAPI, status

from .config import settings
from .core.errors import error_handler_for, unhandled_exception_handler
from .embeddings.embedder import EmptyInputError
from .encoder.state_machine import StateError
from .sessions.registry import SessionExistsError, SessionNotFoundError

from .api import (
    health_routes,
    encoder_routes,
    retriever_routes,
)
from .api.dependencies import get_registry


logger = logging.getLogger("vidmem.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="vidmem",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # --------------------------------------------------------------
    # Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(StateError, error_handler_for(status.HTTP_409_CONFLICT))
    app.add_exception_handler(SessionExistsError, error_handler_for(status.HTTP_409_CONFLICT))
    app.add_exception_handler(SessionNotFoundError, error_handler_for(status.HTTP_404_NOT_FOUND))
    app.add_exception_handler(EmptyInputError, error_handler_for(422))
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(encoder_routes.router)
    app.include_router(retriever_routes.router)

    # --------------------------------------------------------------
    # Lifecycle Hooks
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info(
            "Starting vidmem (codec=%s, embedding=%s/%s)",
            settings.codec,
            settings.embedding.provider,
            settings.embedding.model,
        )

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        """
        Stop every session so no build outlives the application, then
        release the embedding provider's worker threads.
        """
        logger.info("Shutting down vidmem")
        registry = app.dependency_overrides.get(get_registry, get_registry)()
        await registry.stop_all()

        close = getattr(registry.embedder, "close", None)
        if callable(close):
            close()

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn)
# ---------------------------------------------------------------------

app = create_app()
