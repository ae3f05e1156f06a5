"""Tests for the field processor pipeline."""

from __future__ import annotations

import asyncio
import logging

import pytest
from fakes import text_field, typed_field

from sigstream.services.field_processor import (
    FieldProcessor,
    FunctionProcessor,
    ProcessorPipeline,
)
from sigstream.services.session_log import SessionBatch


@pytest.fixture
def batch(session_log) -> SessionBatch:
    return SessionBatch(session_log, "s")


class TestProcessorPipeline:
    """Running processors on closed fields."""

    async def test_sync_processor_logs_result(self, batch, session_log):
        """A sync processor's result is logged under the field title."""
        pipeline = ProcessorPipeline([FunctionProcessor("testField", str.upper)])

        value = await pipeline.run(text_field("testField"), "hello world", batch)
        await batch.commit()

        assert value == "HELLO WORLD"
        history = await session_log.history("s")
        assert len(history) == 1
        last = await session_log.last_entry("s")
        assert last.role == "user"
        assert "processor" in last.tags
        assert last.content[0].text == "Test Field: HELLO WORLD"

    async def test_async_processor(self, batch):
        """Async processors are awaited."""

        async def append_updated(value):
            await asyncio.sleep(0)
            return value + " updated"

        pipeline = ProcessorPipeline([FunctionProcessor("streamField", append_updated)])
        value = await pipeline.run(text_field("streamField"), "original", batch)

        assert value == "original updated"
        (entry,) = batch.pending
        assert entry.role == "user"
        assert "original updated" in entry.rendered

    async def test_no_processor_still_logs(self, batch):
        """Unmatched fields keep their value and still get an entry."""
        pipeline = ProcessorPipeline([FunctionProcessor("other", str.upper)])
        value = await pipeline.run(text_field("summary"), "as is", batch)

        assert value == "as is"
        assert batch.pending[-1].rendered == "Summary: as is"

    async def test_first_match_wins(self, batch):
        """Only the first matching processor runs."""
        pipeline = ProcessorPipeline(
            [
                FunctionProcessor("summary", lambda v: "first"),
                FunctionProcessor("summary", lambda v: "second"),
            ]
        )
        assert await pipeline.run(text_field("summary"), "x", batch) == "first"

    async def test_typed_value_rendered(self, batch):
        """Non-text values are rendered in their text form."""
        pipeline = ProcessorPipeline()
        field = typed_field("scores", "number", is_array=True)
        await pipeline.run(field, [1, 2], batch)
        assert batch.pending[-1].rendered == "Scores: - 1\n- 2"

    async def test_register_and_find(self):
        """Registration appends; ``find`` matches by field name."""
        pipeline = ProcessorPipeline()
        processor = FunctionProcessor("summary", str.strip)
        pipeline.register(processor)

        assert len(pipeline) == 1
        assert pipeline.find("summary") is processor
        assert pipeline.find("other") is None

    def test_function_processor_is_field_processor(self):
        """The adapter satisfies the capability protocol."""
        assert isinstance(FunctionProcessor("x", str), FieldProcessor)

    async def test_processor_error_propagates(self, batch):
        """A failing processor fails the run and logs nothing."""

        def broken(value):
            raise ValueError("bad value")

        pipeline = ProcessorPipeline([FunctionProcessor("summary", broken)])

        with pytest.raises(ValueError, match="bad value"):
            await pipeline.run(text_field("summary"), "x", batch)
        assert batch.pending == []


class TestCancellation:
    """Processors running under ``asyncio.shield``."""

    async def test_cancelled_caller_lets_processor_finish(self, batch):
        """A started processor completes but its result is discarded."""
        started = asyncio.Event()
        finished = asyncio.Event()

        async def slow(value):
            started.set()
            await asyncio.sleep(0.01)
            finished.set()
            return value.upper()

        pipeline = ProcessorPipeline([FunctionProcessor("summary", slow)])
        task = asyncio.create_task(pipeline.run(text_field("summary"), "x", batch))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.wait_for(finished.wait(), timeout=1)
        assert batch.pending == []

    async def test_late_processor_error_is_retrieved(self, batch, caplog):
        """An error raised after the caller was cancelled is consumed."""
        caplog.set_level(logging.DEBUG, logger="sigstream.services.field_processor")
        started = asyncio.Event()
        failing = asyncio.Event()

        async def slow_failure(value):
            started.set()
            await asyncio.sleep(0.01)
            failing.set()
            raise RuntimeError("late failure")

        pipeline = ProcessorPipeline([FunctionProcessor("summary", slow_failure)])
        task = asyncio.create_task(pipeline.run(text_field("summary"), "x", batch))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.wait_for(failing.wait(), timeout=1)
        await asyncio.sleep(0.01)

        assert "late failure" in caplog.text
