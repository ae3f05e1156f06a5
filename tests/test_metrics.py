"""Tests for the Prometheus generation metrics."""

from __future__ import annotations

from sigstream.core.metrics import (
    REGISTRY,
    generate_metrics,
    record_generation,
    record_repair_round,
    record_transport_retry,
)


def value(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestRecordHelpers:
    """Each helper increments its own counter."""

    def test_record_generation(self):
        """Generations are labelled by mode and outcome."""
        before = value(
            "sigstream_generations_total", mode="stream", outcome="IncompleteOutput"
        )
        record_generation(mode="stream", outcome="IncompleteOutput")
        after = value(
            "sigstream_generations_total", mode="stream", outcome="IncompleteOutput"
        )
        assert after == before + 1

    def test_record_repair_round(self):
        before = value("sigstream_repair_rounds_total")
        record_repair_round()
        assert value("sigstream_repair_rounds_total") == before + 1

    def test_record_transport_retry_as_hook(self):
        """The retry helper accepts tenacity's retry state argument."""
        before = value("sigstream_transport_retries_total")
        record_transport_retry(object())
        record_transport_retry()
        assert value("sigstream_transport_retries_total") == before + 2


class TestGenerateMetrics:
    """Exposition output."""

    def test_contains_families(self):
        """All counter families are rendered from the dedicated registry."""
        record_generation(mode="once", outcome="completed")
        output = generate_metrics()

        assert isinstance(output, bytes)
        text = output.decode()
        assert "sigstream_generations_total" in text
        assert "sigstream_repair_rounds_total" in text
        assert "sigstream_transport_retries_total" in text
        assert "python_gc_objects_collected_total" not in text
