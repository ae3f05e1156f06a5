"""Field descriptors and signatures.

A ``Signature`` is the ordered list of input and output
``FieldDescriptor`` objects the prompt is rendered from and the
model output is extracted into.  Descriptors are frozen: once
extraction starts nothing may change them.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sigstream.schemas.enums import FieldTypeName

_WORD_BOUNDARY_RE = re.compile(r"([A-Z]+(?![a-z])|[A-Z][a-z]*|[0-9]+)")
_FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def field_title(name: str) -> str:
    """Derive the marker title for a field name.

    ``output1`` becomes ``Output 1``, ``testField`` becomes
    ``Test Field`` and ``user_name`` becomes ``User Name``.

    Args:
        name: The field's identifier.

    Returns:
        Space-separated title with a capitalised first letter.
    """
    spaced = _WORD_BOUNDARY_RE.sub(r" \1", name.replace("_", " "))
    words = spaced.split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


class FieldType(BaseModel):
    """Type of a field: a scalar kind, optionally an array of it."""

    model_config = ConfigDict(frozen=True)

    name: FieldTypeName = FieldTypeName.STRING
    is_array: bool = False
    classes: tuple[str, ...] = Field(
        default=(),
        description="Allowed labels for ``class`` fields",
    )

    def describe(self) -> str:
        """Human-readable type hint used in prompts and errors."""
        base = self.name.value
        if self.name is FieldTypeName.CLASS and self.classes:
            base = f"class ({', '.join(self.classes)})"
        return f"list of {base}" if self.is_array else base


class FieldDescriptor(BaseModel):
    """A named, typed field of a signature."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=64)
    title: str = ""
    type: FieldType = Field(default_factory=FieldType)
    is_optional: bool = False
    description: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_title(cls, data: Any) -> Any:
        """Fill ``title`` from ``name`` when it is not given."""
        if isinstance(data, dict) and not data.get("title") and data.get("name"):
            data = {**data, "title": field_title(str(data["name"]))}
        return data

    @model_validator(mode="after")
    def _check(self) -> FieldDescriptor:
        if not _FIELD_NAME_RE.match(self.name):
            raise ValueError(f"Invalid field name: {self.name!r}")
        if self.type.name is FieldTypeName.CLASS and not self.type.classes:
            raise ValueError(f"Class field '{self.name}' must declare its classes")
        return self

    @property
    def is_text(self) -> bool:
        """``True`` for plain-text fields that may stream as deltas."""
        return self.type.name is FieldTypeName.STRING and not self.type.is_array


class Signature(BaseModel):
    """Ordered input and output fields plus a task description."""

    model_config = ConfigDict(frozen=True)

    description: str | None = None
    input_fields: tuple[FieldDescriptor, ...] = ()
    output_fields: tuple[FieldDescriptor, ...] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_names(self) -> Signature:
        names = [f.name for f in (*self.input_fields, *self.output_fields)]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate field names: {', '.join(duplicates)}")
        return self

    def with_outputs(self, output_fields: tuple[FieldDescriptor, ...]) -> Signature:
        """Return a copy of this signature with other output fields."""
        return self.model_copy(update={"output_fields": output_fields})

    def key(self) -> str:
        """Stable identifier used to group traces."""
        inputs = ",".join(f.name for f in self.input_fields)
        outputs = ",".join(f.name for f in self.output_fields)
        return f"{inputs}->{outputs}"
