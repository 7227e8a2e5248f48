"""
FastAPI application for the Erection Readiness engine.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .db.base import init_database
from .engine.routes import router as readiness_router
from .logging_config import configure_logging

logger = structlog.get_logger()

settings = get_settings()


def _package_version() -> str:
    try:
        return importlib.metadata.version("erection-readiness")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0+local"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("starting", app=settings.app_name, environment=settings.environment)

    try:
        init_database()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    logger.info("shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    description="Constraint-gated readiness and execution permission for steel erection work",
    version=_package_version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(readiness_router)


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": _package_version()}
