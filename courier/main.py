"""
Courier Receiver - FastAPI Application

Accepts the transmitter's wire protocol and mirrors files locally:
- POST /   save a created or modified file
- DELETE / remove a file or directory
- GET /health
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from courier.api import files, health
from courier.errors import ConfigError
from courier.utils.config import Settings, get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = app.state.settings
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")
    if settings.receiver_root:
        logger.info(f"Mirroring files under {settings.receiver_root}")

    yield

    logger.success("Receiver shut down complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the receiver application.

    Args:
        settings: Receiver settings (defaults to environment settings)

    Raises:
        ConfigError: If no receiver key is configured
    """
    settings = settings or get_settings()
    if not settings.receiver_key:
        raise ConfigError("A receiver key is required (COURIER_RECEIVER_KEY or --key)")

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Receives file changes from Courier transmitters",
        lifespan=lifespan
    )
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({(time.perf_counter() - start) * 1000:.0f} ms)"
        )
        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.log_level.upper() == "DEBUG" else "An error occurred"
            }
        )

    app.include_router(health.router, tags=["Health"])
    app.include_router(files.router, tags=["Files"])

    return app
