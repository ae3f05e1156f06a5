"""
Centralized logging configuration.

Provides structured JSON logging for production and human-readable
output for local development. Call ``setup_logging`` early in the
application lifecycle (e.g. in ``main.py``).
"""

from __future__ import annotations

import logging
import sys


def setup_logging(
    level: str = "INFO",
    *,
    json_format: bool = False,
) -> None:
    """
    Configure the root logger for the application.

    The JSON format includes a ``session_id`` placeholder that is
    populated by the orchestrator through ``extra={"session_id": ...}``
    on generation log records.

    Args:
        level: Logging level name (e.g. ``"INFO"``, ``"DEBUG"``).
        json_format: If ``True``, emit structured JSON lines.
            Recommended for containerised / production environments.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        fmt = (
            '{"time":"%(asctime)s",'
            '"level":"%(levelname)s",'
            '"logger":"%(name)s",'
            '"session_id":"%(session_id)s",'
            '"message":"%(message)s"}'
        )
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(message)s"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))

    # Add a filter that injects a default ``session_id`` so the
    # formatter never fails on a missing key.
    handler.addFilter(_SessionIDFilter())

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid duplicate handlers on repeated calls
    root.handlers.clear()
    root.addHandler(handler)

    _silence_noisy_loggers(log_level)


class _SessionIDFilter(logging.Filter):
    """Inject ``session_id`` into every log record.

    Defaults to ``"-"`` for records emitted outside a
    generation call.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = "-"  # type: ignore[attr-defined]
        return True


def _silence_noisy_loggers(app_level: int) -> None:
    """
    Reduce verbosity of third-party libraries.

    Args:
        app_level: The application's configured log level.
    """
    noisy = [
        "urllib3",
        "httpcore",
        "httpx",
        "LiteLLM",
        "litellm",
        "openai",
    ]
    for name in noisy:
        logging.getLogger(name).setLevel(
            max(app_level, logging.WARNING),
        )
