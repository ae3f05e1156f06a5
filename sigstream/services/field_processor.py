"""
Field processor pipeline.

A field processor post-processes a field's completed value (for
example to normalise, validate or enrich it) before the value is
returned to the caller.  Processors are matched by field name, run
once per closed field in completion order and may be synchronous or
asynchronous: the pipeline always awaits them, so every invocation
is a suspension point.

Whether or not a processor ran, the pipeline adds one
``processor``-tagged entry to the call's session batch with the rendered
(possibly transformed) value, giving downstream consumers a uniform
audit trail.

In streaming calls the processor only sees a field after it closed.
Text deltas already streamed for that field are not re-emitted or
corrected when the processor rewrites the value; only the final
result and the log entry carry the transformed value.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from sigstream.core.constants import ROLE_USER, TAG_PROCESSOR
from sigstream.schemas.fields import FieldDescriptor
from sigstream.schemas.session import LogEntry
from sigstream.services.coercion import render_value
from sigstream.services.session_log import SessionBatch

logger = logging.getLogger(__name__)


@runtime_checkable
class FieldProcessor(Protocol):
    """Capability interface for field processors."""

    def processes(self, field_name: str) -> bool:
        """Return ``True`` if this processor handles *field_name*."""
        ...

    def process(self, value: Any) -> Any | Awaitable[Any]:
        """Return the replacement value (or an awaitable of it)."""
        ...


class FunctionProcessor:
    """Adapts a plain (sync or async) callable to ``FieldProcessor``.

    Usage::

        upper = FunctionProcessor("summary", str.upper)
    """

    def __init__(
        self,
        field_name: str,
        fn: Callable[[Any], Any | Awaitable[Any]],
    ) -> None:
        self.field_name = field_name
        self._fn = fn

    def processes(self, field_name: str) -> bool:
        return field_name == self.field_name

    def process(self, value: Any) -> Any | Awaitable[Any]:
        return self._fn(value)

    def __repr__(self) -> str:
        return f"FunctionProcessor({self.field_name!r})"


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # A shielded invocation may outlive its cancelled caller.
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Processor raised: %r", task.exception())


async def _invoke(processor: FieldProcessor, value: Any) -> Any:
    result = processor.process(value)
    if inspect.isawaitable(result):
        return await result
    # Yield to the loop so sync processors suspend like async ones.
    await asyncio.sleep(0)
    return result


class ProcessorPipeline:
    """Ordered registry of field processors."""

    def __init__(self, processors: Iterable[FieldProcessor] = ()) -> None:
        self._processors: list[FieldProcessor] = list(processors)

    def __len__(self) -> int:
        return len(self._processors)

    def register(self, processor: FieldProcessor) -> None:
        """Append *processor*; earlier registrations win lookups."""
        self._processors.append(processor)

    def find(self, field_name: str) -> FieldProcessor | None:
        """Return the first processor handling *field_name*, if any."""
        for processor in self._processors:
            if processor.processes(field_name):
                return processor
        return None

    async def run(
        self,
        field: FieldDescriptor,
        value: Any,
        batch: SessionBatch,
    ) -> Any:
        """Process a closed field and record it in the session batch.

        The processor runs shielded: if the calling task is
        cancelled, an invocation that already started is allowed
        to finish, but its result is discarded.

        Args:
            field: Descriptor of the closed field.
            value: The coerced field value.
            batch: Batch of the calling generation, receiving the
                ``processor`` entry.

        Returns:
            The processor's return value, or *value* unchanged
            when no processor is registered for the field.
        """
        processor = self.find(field.name)
        if processor is not None:
            logger.debug("Running %r on field '%s'", processor, field.name)
            task = asyncio.ensure_future(_invoke(processor, value))
            task.add_done_callback(_retrieve_exception)
            value = await asyncio.shield(task)

        batch.add(
            LogEntry.from_text(
                ROLE_USER,
                f"{field.title}: {render_value(field, value)}",
                TAG_PROCESSOR,
            )
        )
        return value
