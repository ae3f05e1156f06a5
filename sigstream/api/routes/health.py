"""Health-check and metrics routes."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from sigstream.core.config import get_version
from sigstream.core.metrics import generate_metrics
from sigstream.schemas import HealthResponse

router = APIRouter(tags=["health"])

_version = get_version()


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Liveness probe: returns OK if the web process is running."""
    return HealthResponse(status="ok", version=_version)


@router.get("/metrics", tags=["observability"])
def prometheus_metrics() -> Response:
    """Expose generation counters in Prometheus format."""
    return Response(content=generate_metrics(), media_type=CONTENT_TYPE_LATEST)
