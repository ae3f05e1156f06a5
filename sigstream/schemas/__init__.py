"""
Data contracts shared by the extractor, orchestrator and API.

Every public model is re-exported from this ``__init__`` so that
``from sigstream.schemas import FieldDescriptor`` keeps working.
"""

from sigstream.schemas.enums import FieldTypeName, GenerationState
from sigstream.schemas.events import (
    CompletionChunk,
    DeltaEvent,
    ExtractionEvent,
    FieldCompletionEvent,
    GenerationDelta,
    Trace,
)
from sigstream.schemas.fields import (
    FieldDescriptor,
    FieldType,
    Signature,
    field_title,
)
from sigstream.schemas.requests import GenerateRequest, GenerationOptions
from sigstream.schemas.responses import (
    ErrorResponse,
    GenerateResponse,
    HealthResponse,
)
from sigstream.schemas.session import LogEntry, TextPart

__all__ = [
    "CompletionChunk",
    "DeltaEvent",
    "ErrorResponse",
    "ExtractionEvent",
    "FieldCompletionEvent",
    "FieldDescriptor",
    "FieldType",
    "FieldTypeName",
    "GenerateRequest",
    "GenerateResponse",
    "GenerationDelta",
    "GenerationOptions",
    "GenerationState",
    "HealthResponse",
    "LogEntry",
    "Signature",
    "TextPart",
    "Trace",
    "field_title",
]
