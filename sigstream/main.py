"""
FastAPI entry point.

The application exposes:
* ``POST /api/v1/generate``         run a signature, return all outputs
* ``POST /api/v1/generate/stream``  run a signature, stream NDJSON deltas
* ``GET  /api/v1/health``           liveness probe
* ``GET  /api/v1/metrics``          Prometheus metrics
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sigstream.api.routes import generate, health
from sigstream.core.config import get_settings, get_version
from sigstream.logging_config import setup_logging

# ── Logging ─────────────────────────────────────────────────

settings = get_settings()
setup_logging(level=settings.LOG_LEVEL, json_format=not settings.DEBUG)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application startup / shutdown hooks."""
    logger.info("Starting %s", settings.APP_NAME)
    yield
    logger.info("Shutting down %s", settings.APP_NAME)


# ── App factory ─────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Signature-driven LLM generation with streaming field "
        "extraction, powered by FastAPI and LiteLLM."
    ),
    version=get_version(),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    root_path=settings.ROOT_PATH,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.API_V1_STR)
app.include_router(generate.router, prefix=settings.API_V1_STR)
