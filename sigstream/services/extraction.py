"""
Streaming extraction state machine.

Consumes the cumulative text buffer of one model response and turns
it into per-field events.  Fields are introduced by *markers*: a
line that starts with the field title followed by a colon::

    Output 1: The quick brown fox
    Output 2: jumps over the lazy dog

The extractor is called repeatedly with the buffer seen so far
(the buffer only ever grows) and returns the events that became
safe to surface since the previous call:

* ``DeltaEvent`` for new text of an open plain-text field.  Deltas
  are append-only: trailing whitespace and a trailing line that
  could still turn into the next marker are held back, so nothing
  emitted ever has to be retracted.
* ``FieldCompletionEvent`` once a field's span is closed by the
  next marker (or by the final chunk) and its value was coerced.

All scan progress lives in an ``ExtractionState`` owned by a single
generation call; the extractor itself is stateless and can be
shared.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Collection, Iterator, Sequence
from dataclasses import dataclass, field

from sigstream.core.constants import MARKER_DELIMITER
from sigstream.core.errors import CoercionError, ExtractionFailed
from sigstream.schemas.events import DeltaEvent, ExtractionEvent, FieldCompletionEvent
from sigstream.schemas.fields import FieldDescriptor
from sigstream.services.coercion import coerce

logger = logging.getLogger(__name__)


@dataclass
class ExtractionState:
    """Mutable scan state of one generation call.

    Attributes:
        current_field: Field whose span is open, or ``None``.
        scan_cursor: Buffer offset before which no marker can
            still appear.
        extracted_fields: Names of closed fields, in close order.
        streamed_index: Characters already emitted per text field.
        value_start: Offset where the open field's span begins.
        next_index: Index of the first field that may open next.
        missing_fields: Fields that were skipped, empty or never
            found.
        errors: Coercion failures collected so far.
        done: Set once the final chunk has been processed.
    """

    current_field: FieldDescriptor | None = None
    scan_cursor: int = 0
    extracted_fields: list[str] = field(default_factory=list)
    streamed_index: dict[str, int] = field(default_factory=dict)
    value_start: int = 0
    next_index: int = 0
    missing_fields: list[str] = field(default_factory=list)
    errors: list[CoercionError] = field(default_factory=list)
    done: bool = False


def _marker_pattern(title: str) -> re.Pattern[str]:
    return re.compile(
        rf"^[ \t]*{re.escape(title)}[ \t]*{re.escape(MARKER_DELIMITER)}",
        re.MULTILINE,
    )


def _could_become_marker(tail: str, title: str) -> bool:
    """Whether an unfinished last line may still grow into a marker."""
    if title.startswith(tail):
        return True
    return tail.startswith(title) and not tail[len(title) :].strip(" \t")


class StreamingExtractor:
    """Locates field boundaries in a growing model output buffer.

    Usage::

        extractor = StreamingExtractor(signature.output_fields)
        state = extractor.new_state()
        for buffer, last in increments:
            for event in extractor.advance(state, buffer, is_last_chunk=last):
                ...
    """

    def __init__(
        self,
        fields: Sequence[FieldDescriptor],
        *,
        accept: Collection[str] | None = None,
    ) -> None:
        """
        Args:
            fields: Output fields, in the order the model emits them.
            accept: Names of the fields whose values are wanted.
                The markers of every other field still close spans,
                but those fields are treated as optional and yield
                no events.  ``None`` accepts every field.
        """
        if not fields:
            raise ValueError("At least one output field is required")
        self._ignored: frozenset[str] = frozenset(
            f.name for f in fields if accept is not None and f.name not in accept
        )
        self.fields: tuple[FieldDescriptor, ...] = tuple(
            f.model_copy(update={"is_optional": True})
            if f.name in self._ignored
            else f
            for f in fields
        )
        self._markers = [_marker_pattern(f.title) for f in self.fields]

    def new_state(self) -> ExtractionState:
        """Return a fresh state for a new generation call."""
        return ExtractionState()

    # ── Public API ──────────────────────────────────────────

    def advance(
        self,
        state: ExtractionState,
        buffer: str,
        *,
        is_last_chunk: bool = False,
    ) -> list[ExtractionEvent]:
        """Scan newly appended text and return the resulting events.

        Args:
            state: The call's extraction state (mutated in place).
            buffer: Everything the model produced so far.
            is_last_chunk: ``True`` once the response is complete;
                forces the open field to close.

        Returns:
            Delta and completion events in emission order.

        Raises:
            ExtractionFailed: On the final chunk, when no field
                marker was ever found.
        """
        events: list[ExtractionEvent] = []
        if state.done:
            return events

        while True:
            if state.current_field is None and not self._open_next(state, buffer):
                if is_last_chunk:
                    self._finish(state, buffer)
                break

            found = self._find_marker(buffer, state.next_index, state.scan_cursor)
            if found is not None:
                _, match = found
                self._close(state, buffer[state.value_start : match.start()], events)
                state.scan_cursor = match.start()
                continue

            if is_last_chunk:
                self._close(state, buffer[state.value_start :], events)
                state.scan_cursor = len(buffer)
                continue

            if self._streams(state.current_field):
                self._stream(state, buffer, events)
            self._skip_complete_lines(state, buffer)
            break

        return events

    # ── Marker scanning ─────────────────────────────────────

    def _candidates(self, start: int) -> Iterator[int]:
        """Indices of fields that may open next.

        The field at *start* plus every later one reachable by
        skipping only optional fields.
        """
        for index in range(start, len(self.fields)):
            yield index
            if not self.fields[index].is_optional:
                return

    def _find_marker(
        self,
        buffer: str,
        start_index: int,
        pos: int,
    ) -> tuple[int, re.Match[str]] | None:
        best: tuple[int, re.Match[str]] | None = None
        for index in self._candidates(start_index):
            match = self._markers[index].search(buffer, pos)
            if match and (best is None or match.start() < best[1].start()):
                best = (index, match)
        return best

    def _skip_complete_lines(self, state: ExtractionState, buffer: str) -> None:
        """Move the cursor to the start of the unfinished last line."""
        last_newline = buffer.rfind("\n", state.scan_cursor)
        if last_newline != -1:
            state.scan_cursor = max(state.scan_cursor, last_newline + 1)

    def _open_next(self, state: ExtractionState, buffer: str) -> bool:
        found = self._find_marker(buffer, state.next_index, state.scan_cursor)
        if found is None:
            self._skip_complete_lines(state, buffer)
            return False

        index, match = found
        for skipped in self.fields[state.next_index : index]:
            if skipped.name not in self._ignored:
                logger.debug("Optional field '%s' skipped", skipped.name)
                state.missing_fields.append(skipped.name)

        state.current_field = self.fields[index]
        state.next_index = index + 1
        state.value_start = match.end()
        state.scan_cursor = match.end()
        logger.debug(
            "Field '%s' opened at offset %d",
            state.current_field.name,
            match.start(),
        )
        return True

    # ── Field lifecycle ─────────────────────────────────────

    def _safe_span(self, state: ExtractionState, buffer: str) -> str:
        """Open span minus a last line that may still become a marker."""
        span = buffer[state.value_start :]
        cut = span.rfind("\n")
        if cut == -1:
            return span
        tail = span[cut + 1 :].lstrip(" \t")
        if not tail:
            return span
        for index in self._candidates(state.next_index):
            if _could_become_marker(tail, self.fields[index].title):
                return span[:cut]
        return span

    def _emit_text(
        self,
        state: ExtractionState,
        name: str,
        text: str,
        events: list[ExtractionEvent],
    ) -> None:
        streamed = state.streamed_index.get(name, 0)
        if len(text) > streamed:
            events.append(DeltaEvent(field_name=name, partial_value=text[streamed:]))
            state.streamed_index[name] = len(text)

    def _stream(
        self,
        state: ExtractionState,
        buffer: str,
        events: list[ExtractionEvent],
    ) -> None:
        current = state.current_field
        assert current is not None
        self._emit_text(state, current.name, self._safe_span(state, buffer).strip(), events)

    def _close(
        self,
        state: ExtractionState,
        span: str,
        events: list[ExtractionEvent],
    ) -> None:
        current = state.current_field
        assert current is not None
        state.current_field = None
        if current.name in self._ignored:
            return
        state.extracted_fields.append(current.name)

        text = span.strip()
        if current.is_text:
            self._emit_text(state, current.name, text, events)

        if not text and not current.type.is_array:
            logger.debug("Field '%s' closed empty", current.name)
            state.missing_fields.append(current.name)
            return

        try:
            value = coerce(current, text)
        except CoercionError as exc:
            logger.debug("Field '%s' failed coercion: %s", current.name, exc)
            state.errors.append(exc)
            return

        logger.debug("Field '%s' closed (%d chars)", current.name, len(text))
        events.append(FieldCompletionEvent(field=current, value=value, raw_text=span))

    def _finish(self, state: ExtractionState, buffer: str) -> None:
        state.done = True
        wanted = [f for f in self.fields if f.name not in self._ignored]
        if not state.extracted_fields and (
            len(wanted) == 1 or any(not f.is_optional for f in wanted)
        ):
            raise ExtractionFailed([f.title for f in wanted], buffer)

        for remaining in self.fields[state.next_index :]:
            if remaining.name not in self._ignored:
                state.missing_fields.append(remaining.name)
        state.next_index = len(self.fields)
