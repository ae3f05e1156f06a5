"""
Field value coercion.

Converts the raw text span extracted for a field into the field's
declared type, and renders typed values back to the text form the
model is asked to produce.

Array fields follow a fixed grammar, tried in this order:

===============  ==================================================
Fenced block     A span wrapped in a ```` ``` ```` fence is replaced
                 by the fence body, then split by the rules below.
JSON array       The whole span is ``[ ... ]`` and parses as JSON.
Dash lines       Every non-blank line starts with ``- ``.
Comma list       A single line split on ``,``.
===============  ==================================================

Anything else (multiple lines without dashes, a mix of dash and
plain lines, empty comma items) is a ``CoercionError``; no
best-effort guessing is done.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from sigstream.core.errors import CoercionError
from sigstream.schemas.enums import FieldTypeName
from sigstream.schemas.fields import FieldDescriptor

_INT_RE = re.compile(r"^[+-]?\d+$")
_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_FENCE_RE = re.compile(r"^```[^\n]*\n(.*?)\n?```$", re.DOTALL)
_DASH_LINE_RE = re.compile(r"^\s*-\s+(.*?)\s*$")

_TRUE_TOKENS: frozenset[str] = frozenset({"true", "yes", "1"})
_FALSE_TOKENS: frozenset[str] = frozenset({"false", "no", "0"})


def _fail(field: FieldDescriptor, text: str) -> CoercionError:
    return CoercionError(field.name, field.type.describe(), text)


def _unfence(text: str) -> str:
    """Return the body of a fenced code block, or *text* unchanged."""
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


# ── Scalar coercers ─────────────────────────────────────────


def _to_string(field: FieldDescriptor, text: str) -> str:
    return text


def _to_number(field: FieldDescriptor, text: str) -> int | float:
    if _INT_RE.match(text):
        return int(text)
    if _NUMBER_RE.match(text):
        return float(text)
    raise _fail(field, text)


def _to_boolean(field: FieldDescriptor, text: str) -> bool:
    token = text.lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise _fail(field, text)


def _to_json(field: FieldDescriptor, text: str) -> Any:
    try:
        return json.loads(_unfence(text))
    except json.JSONDecodeError as exc:
        raise _fail(field, text) from exc


def _to_class(field: FieldDescriptor, text: str) -> str:
    wanted = text.lower()
    for label in field.type.classes:
        if label.lower() == wanted:
            return label
    raise _fail(field, text)


def _to_code(field: FieldDescriptor, text: str) -> str:
    return _unfence(text)


def _to_date(field: FieldDescriptor, text: str) -> date:
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise _fail(field, text) from exc


def _to_datetime(field: FieldDescriptor, text: str) -> datetime:
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise _fail(field, text) from exc


_COERCERS: dict[FieldTypeName, Callable[[FieldDescriptor, str], Any]] = {
    FieldTypeName.STRING: _to_string,
    FieldTypeName.NUMBER: _to_number,
    FieldTypeName.BOOLEAN: _to_boolean,
    FieldTypeName.JSON: _to_json,
    FieldTypeName.CLASS: _to_class,
    FieldTypeName.CODE: _to_code,
    FieldTypeName.DATE: _to_date,
    FieldTypeName.DATETIME: _to_datetime,
}


def _coerce_scalar(field: FieldDescriptor, text: str) -> Any:
    return _COERCERS[field.type.name](field, text.strip())


def _coerce_native_item(field: FieldDescriptor, item: Any) -> Any:
    """Validate an item that came out of a JSON array."""
    kind = field.type.name
    if isinstance(item, str) and kind is not FieldTypeName.JSON:
        return _coerce_scalar(field, item)
    if kind is FieldTypeName.JSON:
        return item
    if kind is FieldTypeName.BOOLEAN and isinstance(item, bool):
        return item
    if (
        kind is FieldTypeName.NUMBER
        and isinstance(item, int | float)
        and not isinstance(item, bool)
    ):
        return item
    if kind is FieldTypeName.STRING and isinstance(item, int | float):
        return str(item)
    raise _fail(field, json.dumps(item))


# ── Arrays ──────────────────────────────────────────────────


def split_array(field: FieldDescriptor, text: str) -> list[Any]:
    """Split an array span into raw items using the fixed grammar.

    Items of the JSON-array form are returned as parsed JSON values;
    items of the other forms are returned as stripped strings.

    Args:
        field: The array field being coerced (for error context).
        text: The field's raw span.

    Returns:
        The raw items, in order.  An empty span yields ``[]``.

    Raises:
        CoercionError: If the span matches none of the forms.
    """
    text = _unfence(text.strip()).strip()
    if not text:
        return []

    if text.startswith("[") and text.endswith("]"):
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise _fail(field, text) from exc
        if not isinstance(items, list):
            raise _fail(field, text)
        return items

    lines = [line for line in text.splitlines() if line.strip()]
    dashed = [_DASH_LINE_RE.match(line) for line in lines]
    if any(dashed):
        if not all(dashed):
            raise _fail(field, text)
        return [m.group(1) for m in dashed if m is not None]

    if len(lines) > 1 or field.type.name is FieldTypeName.JSON:
        raise _fail(field, text)

    items = [part.strip() for part in text.split(",")]
    if any(not item for item in items):
        raise _fail(field, text)
    return items


# ── Public API ──────────────────────────────────────────────


def coerce(field: FieldDescriptor, raw_text: str) -> Any:
    """Convert a field's raw text span into its declared type.

    Args:
        field: Descriptor of the field the span belongs to.
        raw_text: The text between the field's marker and the
            next marker (or end of output).

    Returns:
        The typed value; a list for array fields.

    Raises:
        CoercionError: If the text does not conform to the type.
    """
    if not field.type.is_array:
        return _coerce_scalar(field, raw_text)

    text = _unfence(raw_text.strip()).strip()
    if text.startswith("[") and text.endswith("]"):
        return [_coerce_native_item(field, item) for item in split_array(field, text)]
    return [_coerce_scalar(field, item) for item in split_array(field, text)]


def _render_scalar(field: FieldDescriptor, value: Any) -> str:
    kind = field.type.name
    if kind is FieldTypeName.BOOLEAN:
        return "true" if value else "false"
    if kind is FieldTypeName.JSON:
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, date | datetime):
        return value.isoformat()
    return str(value)


def render_value(field: FieldDescriptor, value: Any) -> str:
    """Render a typed value as the text the model would emit.

    Arrays are rendered as dash lines so that
    ``coerce(field, render_value(field, v))`` round-trips.

    Args:
        field: Descriptor of the field the value belongs to.
        value: A value previously produced by :func:`coerce`
            (or by a field processor).

    Returns:
        Text form of the value.
    """
    if field.type.is_array and isinstance(value, list):
        return "\n".join(f"- {_render_scalar(field, item)}" for item in value)
    return _render_scalar(field, value)
