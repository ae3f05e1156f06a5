"""
Error taxonomy for generation calls.

Every failure a caller can observe is a ``GenerationError``
subclass carrying enough structured context to decide whether
to retry, repair, or surface the problem.
"""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for all generation failures."""


class ExtractionFailed(GenerationError):
    """No usable field marker was found in the final model output."""

    def __init__(self, expected: list[str], content: str = "") -> None:
        self.expected = expected
        self.content = content
        super().__init__(
            "No field markers found in model output "
            f"(expected one of: {', '.join(expected)})"
        )


class CoercionError(GenerationError):
    """A field's raw text does not conform to its declared type."""

    def __init__(self, field_name: str, expected_type: str, text: str) -> None:
        self.field_name = field_name
        self.expected_type = expected_type
        self.text = text
        super().__init__(
            f"Field '{field_name}' expected {expected_type}, got {text!r}"
        )


class IncompleteOutput(GenerationError):
    """Required fields were still missing after the repair budget."""

    def __init__(
        self,
        missing_fields: list[str],
        errors: list[CoercionError] | None = None,
    ) -> None:
        self.missing_fields = missing_fields
        self.errors = errors or []
        detail = f"Missing required fields: {', '.join(missing_fields)}"
        if self.errors:
            detail += "; " + "; ".join(str(e) for e in self.errors)
        super().__init__(detail)


class TransportError(GenerationError):
    """The model transport failed to deliver a response.

    Attributes:
        kind: Name of the underlying failure (usually the
            provider exception class name), propagated unchanged.
        retryable: Whether the orchestrator may retry the request.
    """

    def __init__(self, kind: str, message: str, *, retryable: bool = True) -> None:
        self.kind = kind
        self.retryable = retryable
        super().__init__(f"{kind}: {message}")
