"""Signature-driven LLM generation with streaming field extraction."""

from sigstream.core.errors import (
    CoercionError,
    ExtractionFailed,
    GenerationError,
    IncompleteOutput,
    TransportError,
)
from sigstream.schemas import (
    FieldDescriptor,
    FieldType,
    FieldTypeName,
    GenerationDelta,
    Signature,
)
from sigstream.services.chain_of_thought import ChainOfThought
from sigstream.services.field_processor import FunctionProcessor, ProcessorPipeline
from sigstream.services.generator import Generator
from sigstream.services.transport import LiteLLMTransport

__all__ = [
    "ChainOfThought",
    "CoercionError",
    "ExtractionFailed",
    "FieldDescriptor",
    "FieldType",
    "FieldTypeName",
    "FunctionProcessor",
    "GenerationDelta",
    "GenerationError",
    "Generator",
    "IncompleteOutput",
    "LiteLLMTransport",
    "ProcessorPipeline",
    "Signature",
    "TransportError",
]
