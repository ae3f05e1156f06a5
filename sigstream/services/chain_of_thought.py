"""Chain-of-thought generator: asks for a ``reason`` before the outputs."""

from __future__ import annotations

from typing import Any

from sigstream.core.constants import REASON_FIELD_NAME
from sigstream.schemas.fields import FieldDescriptor, Signature
from sigstream.services.transport import ModelTransport
from sigstream.services.generator import Generator


def with_reasoning(signature: Signature) -> Signature:
    """Return *signature* with a leading ``reason`` output field."""
    outputs = ", ".join(f"`{f.name}`" for f in signature.output_fields)
    reason = FieldDescriptor(
        name=REASON_FIELD_NAME,
        description=f"Let's think step by step in order to produce {outputs}. We ...",
    )
    return signature.with_outputs((reason, *signature.output_fields))


class ChainOfThought(Generator):
    """``Generator`` whose first output field is the model's reasoning.

    The ``reason`` field is a plain-text field, so
    ``streaming_forward()`` streams the reasoning as it is written.
    """

    def __init__(
        self,
        signature: Signature,
        transport: ModelTransport,
        **kwargs: Any,
    ) -> None:
        super().__init__(with_reasoning(signature), transport, **kwargs)
