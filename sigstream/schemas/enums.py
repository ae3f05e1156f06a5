"""Enumerations shared across the application."""

from __future__ import annotations

from enum import StrEnum


class FieldTypeName(StrEnum):
    """Declared value type of a signature field."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    CLASS = "class"
    CODE = "code"
    DATE = "date"
    DATETIME = "datetime"


class GenerationState(StrEnum):
    """Lifecycle of a single generation call."""

    IDLE = "IDLE"
    REQUEST_SENT = "REQUEST_SENT"
    EXTRACTING = "EXTRACTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
