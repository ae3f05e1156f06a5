"""Request models for generation endpoints."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, Field, model_validator

from sigstream.schemas.fields import FieldDescriptor, Signature

# ── Model validation ────────────────────────────────────────

ModelId = Annotated[
    str,
    Field(
        min_length=2,
        max_length=128,
        pattern=r"^[a-zA-Z0-9][a-zA-Z0-9_./:-]*$",
        description=(
            "LiteLLM model ID (e.g. 'gpt-4o-mini', "
            "'anthropic/claude-3-5-haiku-latest')."
        ),
    ),
]


class GenerationOptions(BaseModel):
    """Per-request model options forwarded to the transport."""

    temperature: float | None = Field(
        default=None,
        ge=0.0,
        le=2.0,
        description="LLM sampling temperature.",
    )
    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Upper bound on generated tokens.",
    )

    def to_flat_dict(self) -> dict[str, Any]:
        """Return only the options that were set."""
        return self.model_dump(exclude_none=True)


class GenerateRequest(BaseModel):
    """Body of ``POST /generate`` and ``POST /generate/stream``."""

    description: str | None = Field(
        default=None,
        description="Task description rendered at the top of the prompt.",
    )
    input_fields: list[FieldDescriptor] = Field(
        default_factory=list,
        description="Ordered input field descriptors.",
    )
    output_fields: list[FieldDescriptor] = Field(
        ...,
        min_length=1,
        description="Ordered output field descriptors.",
    )
    inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Values for the input fields, keyed by name.",
    )
    model: ModelId | None = Field(
        default=None,
        description="Overrides ``DEFAULT_MODEL`` when set.",
    )
    session_id: str | None = Field(
        default=None,
        max_length=128,
        description="Session whose log receives this call's entries.",
    )
    options: GenerationOptions = Field(default_factory=GenerationOptions)

    @model_validator(mode="after")
    def _inputs_match_fields(self) -> GenerateRequest:
        declared = {f.name for f in self.input_fields}
        unknown = sorted(set(self.inputs) - declared)
        if unknown:
            raise ValueError(f"Unknown input fields: {', '.join(unknown)}")
        missing = sorted(
            f.name
            for f in self.input_fields
            if not f.is_optional and f.name not in self.inputs
        )
        if missing:
            raise ValueError(f"Missing input values: {', '.join(missing)}")
        return self

    def to_signature(self) -> Signature:
        """Build the ``Signature`` described by this request."""
        return Signature(
            description=self.description,
            input_fields=tuple(self.input_fields),
            output_fields=tuple(self.output_fields),
        )
