"""
RCA Analyzer Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures logging and global exception handling, and provides a test-friendly
application factory.
"""

from __future__ import annotations

import contextlib
import logging

from fastapi import FastAPI

from .config import settings
from .core.errors import (
    ChunkingValidationError,
    NotFoundError,
    UpstreamError,
    not_found_handler,
    unhandled_exception_handler,
    upstream_error_handler,
    validation_error_handler,
)
from .db import async_engine, init_models

from .api import (
    health_routes,
    ingestion_routes,
    search_routes,
    management_routes,
)


logger = logging.getLogger("rca.app")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting rca-analyzer (store=%s)", settings.store_backend)

    if settings.store_backend == "postgres":
        await init_models()
        logger.info("Database schema ready")

    yield

    logger.info("Shutting down rca-analyzer")
    await async_engine.dispose()


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
    configure_logging()

    app = FastAPI(
        title="rca-analyzer",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(ChunkingValidationError, validation_error_handler)
    app.add_exception_handler(UpstreamError, upstream_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(ingestion_routes.router)
    app.include_router(search_routes.router)
    app.include_router(management_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn)
# ---------------------------------------------------------------------

app = create_app()
