"""Events exchanged between the transport, extractor and caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sigstream.schemas.fields import FieldDescriptor


@dataclass(frozen=True)
class CompletionChunk:
    """One increment delivered by a model transport.

    A non-streaming response is a single chunk whose
    ``finish_reason`` is set.
    """

    content: str
    finish_reason: str | None = None


@dataclass(frozen=True)
class DeltaEvent:
    """Append-only slice of a text field's value."""

    field_name: str
    partial_value: str


@dataclass(frozen=True)
class FieldCompletionEvent:
    """A field's span closed and its value was coerced."""

    field: FieldDescriptor
    value: Any
    raw_text: str


ExtractionEvent = DeltaEvent | FieldCompletionEvent


@dataclass(frozen=True)
class GenerationDelta:
    """What ``Generator.streaming_forward`` yields to the caller."""

    delta: dict[str, Any]
    version: int = 0


@dataclass
class Trace:
    """A completed call's inputs and outputs, keyed by program."""

    key: str
    trace: dict[str, Any] = field(default_factory=dict)
