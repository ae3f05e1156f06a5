"""
Prompt rendering for signatures.

Renders the task description, the output format (one ``Title:``
marker line per output field, in extraction order), optional
few-shot demos and the input values.  The marker lines rendered
here are exactly what ``StreamingExtractor`` scans for.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from sigstream.core.errors import CoercionError
from sigstream.schemas.enums import FieldTypeName
from sigstream.schemas.fields import FieldDescriptor, Signature
from sigstream.services.coercion import render_value

_SEPARATOR = "---"


def _format_hint(field: FieldDescriptor) -> str:
    hint = field.description or field.type.describe()
    if field.type.is_array:
        hint += ', one "- item" line per item'
    elif field.type.name is FieldTypeName.JSON:
        hint += ", valid JSON"
    elif field.type.name in (FieldTypeName.DATE, FieldTypeName.DATETIME):
        hint += ", ISO 8601"
    if field.is_optional:
        hint += ", optional"
    return f"{field.title}: <{hint}>"


def _render_fields(
    fields: Sequence[FieldDescriptor],
    values: Mapping[str, Any],
) -> list[str]:
    return [
        f"{f.title}: {render_value(f, values[f.name])}"
        for f in fields
        if values.get(f.name) is not None
    ]


class PromptTemplate:
    """Renders prompts for one signature."""

    def __init__(
        self,
        signature: Signature,
        demos: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        self.signature = signature
        self.demos = list(demos)

    def _format_section(self) -> str:
        lines = [
            "Follow the following format. Start each field on a new line "
            "with its title and a colon, in this order:",
            "",
            *(_format_hint(f) for f in self.signature.output_fields),
        ]
        return "\n".join(lines)

    def _demo_section(self) -> str:
        fields = (*self.signature.input_fields, *self.signature.output_fields)
        blocks = ["\n".join(_render_fields(fields, demo)) for demo in self.demos]
        return f"\n\n{_SEPARATOR}\n\n".join(b for b in blocks if b)

    def render(self, values: Mapping[str, Any]) -> str:
        """Render the full prompt for the given input values."""
        sections: list[str] = []
        if self.signature.description:
            sections.append(self.signature.description)
        sections.append(self._format_section())
        demos = self._demo_section()
        if demos:
            sections.append(demos)
        inputs = _render_fields(self.signature.input_fields, values)
        if inputs:
            sections.append("\n".join(inputs))
        return f"\n\n{_SEPARATOR}\n\n".join(sections)

    def render_repair(
        self,
        prompt: str,
        previous_output: str,
        fields: Sequence[FieldDescriptor],
        errors: Sequence[CoercionError] = (),
    ) -> str:
        """Render a follow-up prompt asking only for *fields*.

        Args:
            prompt: The prompt of the original request.
            previous_output: The model's answer to it.
            fields: Required fields that are missing or invalid.
            errors: Coercion failures to point the model at.

        Returns:
            The repair prompt.
        """
        lines = [
            prompt,
            previous_output.strip(),
            _SEPARATOR,
            "Your answer is missing or has invalid values for some fields. "
            "Reply with only these fields, in this order:",
            "",
            *(_format_hint(f) for f in fields),
        ]
        if errors:
            lines.append("")
            lines.extend(f"Error: {e}" for e in errors)
        return "\n\n".join(lines[:3]) + "\n\n" + "\n".join(lines[3:])
