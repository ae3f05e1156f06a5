"""
Prometheus metrics for generation calls.

Counters live on a dedicated ``CollectorRegistry`` so that the
``/metrics`` endpoint renders only this service's families and
tests can read them without touching the default registry.

Usage:
    Call ``record_generation()`` / ``record_repair_round()`` /
    ``record_transport_retry()`` from the orchestrator.  The
    FastAPI side serves ``generate_metrics()``.
"""

from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, generate_latest

logger = logging.getLogger(__name__)

#: Dedicated registry that avoids default-registry conflicts.
REGISTRY = CollectorRegistry()

_GENERATIONS = Counter(
    "sigstream_generations",
    "Generation calls by mode and outcome.",
    ["mode", "outcome"],
    registry=REGISTRY,
)

_REPAIR_ROUNDS = Counter(
    "sigstream_repair_rounds",
    "Repair rounds issued for missing required fields.",
    registry=REGISTRY,
)

_TRANSPORT_RETRIES = Counter(
    "sigstream_transport_retries",
    "Requests retried after a transport failure.",
    registry=REGISTRY,
)


# ── Record helpers ──────────────────────────────────────────


def record_generation(*, mode: str, outcome: str) -> None:
    """Count one finished generation call.

    Args:
        mode: ``"once"``, ``"stream"`` or ``"streaming_forward"``.
        outcome: ``"completed"`` or the failing error class name.
    """
    _GENERATIONS.labels(mode=mode, outcome=outcome).inc()


def record_repair_round() -> None:
    """Count one repair round."""
    _REPAIR_ROUNDS.inc()


def record_transport_retry(retry_state: object = None) -> None:
    """Count one transport retry.

    Signature-compatible with tenacity's ``before_sleep`` hook.
    """
    _TRANSPORT_RETRIES.inc()


def generate_metrics() -> bytes:
    """Render Prometheus exposition format for generation metrics.

    Returns:
        UTF-8 bytes ready to be served on ``/metrics``.
    """
    return generate_latest(REGISTRY)
