"""
FastAPI dependency-injection helpers.

Provides ``Depends()``-compatible providers for the session log,
the model transport and the few-shot demos shared by the
generation routes.  Tests replace them through
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import lru_cache

from sigstream.core.config import get_settings
from sigstream.services.demos import ProgramDemos, load_demos
from sigstream.services.session_log import SessionLog, build_session_log
from sigstream.services.transport import LiteLLMTransport, ModelTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str | None], ModelTransport]


@lru_cache
def get_session_log() -> SessionLog:
    """Return the process-wide session log."""
    return build_session_log()


def _litellm_transport(model: str | None) -> ModelTransport:
    return LiteLLMTransport(model=model)


def get_transport_factory() -> TransportFactory:
    """Return a factory building a transport for a model ID.

    Usage as a FastAPI dependency::

        @router.post("/generate")
        async def generate(make: TransportFactory = Depends(get_transport_factory)):
            transport = make("gpt-4o-mini")
    """
    return _litellm_transport


@lru_cache
def get_demos() -> list[ProgramDemos]:
    """Load demos from ``DEMOS_PATH`` once; empty when unset."""
    path = get_settings().DEMOS_PATH
    if not path:
        return []
    demos = load_demos(path)
    logger.info("Loaded %d demo group(s) from %s", len(demos), path)
    return demos
