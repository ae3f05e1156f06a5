"""Response models for generation and health endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GenerateResponse(BaseModel):
    """Returned by ``POST /generate``."""

    outputs: dict[str, Any] = Field(
        ...,
        description="Field values in completion order.",
    )
    session_id: str = Field(
        ...,
        description="Session the call was logged under.",
    )


class ErrorResponse(BaseModel):
    """Error payload (also the last NDJSON line of a failed stream)."""

    error: str = Field(..., description="Error class name")
    message: str = Field(..., description="Human-readable detail")
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Returned by the health-check endpoint."""

    status: str = Field(
        ...,
        description="Service health status",
    )
    version: str = Field(
        ...,
        description="Application version",
    )
