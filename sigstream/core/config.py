"""
Application configuration and settings.

Centralises all external configuration (env-vars / .env) and
version discovery.  Redis connectivity lives in
``sigstream.core.redis`` and FastAPI dependency injection in
``sigstream.api.deps``.
"""

from __future__ import annotations

import importlib.metadata
import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# ── Package version (single source of truth from pyproject.toml) ────────


def get_version() -> str:
    """Return the installed package version.

    Falls back to ``"0.0.0-dev"`` when the package metadata
    is not available (e.g. during source checkouts).

    Returns:
        Semantic version string.
    """
    try:
        return importlib.metadata.version("sigstream")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0-dev"


# ── Settings ────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # General
    APP_NAME: str = "SigStream API"
    API_V1_STR: str = "/api/v1"
    ROOT_PATH: str = ""
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # Redis (session log backend)
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # API Keys (populated via .env, forwarded to LiteLLM)
    OPENAI_API_KEY: str = ""
    GEMINI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""

    # Model defaults (overridable per-request)
    DEFAULT_MODEL: str = "gpt-4o-mini"
    DEFAULT_TEMPERATURE: float | None = None
    DEFAULT_MAX_TOKENS: int | None = None

    # ── Generation budgets ──────────────────────────────────────────
    TRANSPORT_MAX_RETRIES: int = 2
    REPAIR_MAX_ROUNDS: int = 1

    # ── Session log ─────────────────────────────────────────────────
    SESSION_LOG_BACKEND: str = "memory"  # memory | redis
    SESSION_LOG_TTL: int = 86400  # seconds

    # ── Few-shot demos ──────────────────────────────────────────────
    DEMOS_PATH: str = ""

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v: str | list[str]) -> list[str]:
        """Accept a JSON-encoded string or a list."""
        if isinstance(v, str):
            import json

            return json.loads(v)
        return v

    @field_validator("SESSION_LOG_BACKEND")
    @classmethod
    def _check_backend(cls, v: str) -> str:
        """Only ``memory`` and ``redis`` backends exist."""
        backend = v.lower()
        if backend not in ("memory", "redis"):
            raise ValueError(
                f"SESSION_LOG_BACKEND must be 'memory' or 'redis', got {v!r}"
            )
        return backend

    def api_key_for(self, model: str) -> str | None:
        """Pick the configured API key matching *model*'s provider.

        Args:
            model: LiteLLM model identifier (e.g. ``gpt-4o``).

        Returns:
            An API key string, or ``None`` so that LiteLLM falls
            back to its own environment lookup.
        """
        lower = model.lower()
        if "gpt" in lower or "openai" in lower:
            return self.OPENAI_API_KEY or None
        if "claude" in lower or "anthropic" in lower:
            return self.ANTHROPIC_API_KEY or None
        if "gemini" in lower:
            return self.GEMINI_API_KEY or None
        return None

    # Derived URLs
    @property
    def REDIS_URL(self) -> str:  # noqa: N802
        """Full Redis connection URL."""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Using ``lru_cache`` ensures the .env file is read exactly
    once.  Override in tests via ``app.dependency_overrides``
    or ``get_settings.cache_clear()``.
    """
    return Settings()
