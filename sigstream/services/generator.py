"""
Generation orchestrator: drives completions through extraction.

A ``Generator`` binds a ``Signature`` to a ``ModelTransport``.  Each
call renders the prompt, sends one completion request, feeds every
increment of the response to a ``StreamingExtractor`` and routes
closed fields through the ``ProcessorPipeline``:

* ``forward()`` returns the complete ``GenOut`` mapping (buffering a
  streamed response when ``stream=True``).
* ``streaming_forward()`` yields ``GenerationDelta`` objects as soon
  as field text is safely known.

Call lifecycle: ``IDLE → REQUEST_SENT → EXTRACTING → COMPLETED`` or
``FAILED``.  When required fields are missing or failed coercion,
up to ``max_repair_rounds`` follow-up requests ask only for those
fields.  ``TransportError`` is retried with a fresh extraction state
(in ``streaming_forward`` only until the first increment arrived,
since surfaced deltas cannot be taken back).
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_none,
)

from sigstream.core.config import get_settings
from sigstream.core.constants import (
    DEFAULT_SESSION_ID,
    ROLE_ASSISTANT,
    ROLE_USER,
    TAG_PROMPT,
    TAG_REPAIR,
    TAG_RESPONSE,
)
from sigstream.core.errors import (
    CoercionError,
    ExtractionFailed,
    GenerationError,
    IncompleteOutput,
    TransportError,
)
from sigstream.core.metrics import (
    record_generation,
    record_repair_round,
    record_transport_retry,
)
from sigstream.schemas.enums import GenerationState
from sigstream.schemas.events import (
    CompletionChunk,
    DeltaEvent,
    ExtractionEvent,
    FieldCompletionEvent,
    GenerationDelta,
    Trace,
)
from sigstream.schemas.fields import FieldDescriptor, Signature
from sigstream.schemas.session import LogEntry
from sigstream.services.demos import ProgramDemos
from sigstream.services.extraction import ExtractionState, StreamingExtractor
from sigstream.services.field_processor import (
    FieldProcessor,
    FunctionProcessor,
    ProcessorPipeline,
)
from sigstream.services.prompt import PromptTemplate
from sigstream.services.session_log import (
    InMemorySessionLog,
    SessionBatch,
    SessionLog,
)
from sigstream.services.transport import ModelTransport

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and exc.retryable


def _before_retry(retry_state: RetryCallState) -> None:
    record_transport_retry(retry_state)
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Transport failure on attempt %d (%s), retrying",
        retry_state.attempt_number,
        exc,
    )


async def _aclose(stream: AsyncIterator[CompletionChunk]) -> None:
    close = getattr(stream, "aclose", None)
    if close is not None:
        await close()


@dataclass
class _Call:
    """Per-call bookkeeping; never shared between calls."""

    session_id: str
    mode: str
    batch: SessionBatch
    values: dict[str, Any] = field(default_factory=dict)
    state: GenerationState = GenerationState.IDLE

    @property
    def finished(self) -> bool:
        return self.state in (GenerationState.COMPLETED, GenerationState.FAILED)

    def transition(self, new_state: GenerationState) -> None:
        logger.debug(
            "Generation %s -> %s",
            self.state,
            new_state,
            extra={"session_id": self.session_id},
        )
        self.state = new_state


@dataclass
class _Round:
    """Outcome of one request/extraction round."""

    content: str = ""
    state: ExtractionState | None = None


class Generator:
    """Runs a signature against a model and extracts typed outputs.

    Args:
        signature: Input/output fields and task description.
        transport: Model transport used for every request.
        session_log: Log receiving prompts, responses and processor
            entries.  Defaults to a private in-memory log.
        processors: Field processors, looked up in order.
        max_retries: Transport retries per request
            (``TRANSPORT_MAX_RETRIES`` when ``None``).
        max_repair_rounds: Repair rounds per call
            (``REPAIR_MAX_ROUNDS`` when ``None``).
        key: Trace/demo group key; defaults to the signature key.
    """

    def __init__(
        self,
        signature: Signature,
        transport: ModelTransport,
        *,
        session_log: SessionLog | None = None,
        processors: Iterable[FieldProcessor] = (),
        max_retries: int | None = None,
        max_repair_rounds: int | None = None,
        key: str | None = None,
    ) -> None:
        settings = get_settings()
        self.signature = signature
        self.transport = transport
        self.session_log: SessionLog = (
            session_log if session_log is not None else InMemorySessionLog()
        )
        self.pipeline = ProcessorPipeline(processors)
        self.max_retries = (
            settings.TRANSPORT_MAX_RETRIES if max_retries is None else max_retries
        )
        self.max_repair_rounds = (
            settings.REPAIR_MAX_ROUNDS
            if max_repair_rounds is None
            else max_repair_rounds
        )
        self.key = key or signature.key()
        self._demos: list[dict[str, Any]] = []
        self._traces: list[Trace] = []

    # ── Configuration ───────────────────────────────────────

    def add_processor(self, processor: FieldProcessor) -> None:
        """Register a field processor."""
        self.pipeline.register(processor)

    def add_field_processor(self, field_name: str, fn: Any) -> None:
        """Register a plain (sync or async) callable for *field_name*."""
        self.pipeline.register(FunctionProcessor(field_name, fn))

    def set_demos(self, demos: Iterable[ProgramDemos]) -> None:
        """Use the traces recorded under this generator's key as demos."""
        self._demos = [
            trace for group in demos if group.key == self.key for trace in group.traces
        ]

    def get_traces(self) -> list[Trace]:
        """Traces of the successful calls made so far."""
        return list(self._traces)

    def _template(self) -> PromptTemplate:
        return PromptTemplate(self.signature, self._demos)

    def _check_inputs(self, values: Mapping[str, Any]) -> None:
        missing = [
            f.name
            for f in self.signature.input_fields
            if not f.is_optional and values.get(f.name) is None
        ]
        if missing:
            raise ValueError(f"Missing input values: {', '.join(missing)}")

    # ── Shared helpers ──────────────────────────────────────

    def _extractor(self, fields: Sequence[FieldDescriptor]) -> StreamingExtractor:
        """Extractor that knows every output marker but accepts *fields* only."""
        return StreamingExtractor(
            self.signature.output_fields,
            accept={f.name for f in fields},
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_none(),
            before_sleep=_before_retry,
            reraise=True,
        )

    def _log(self, call: _Call, role: str, text: str, *tags: str) -> None:
        call.batch.add(LogEntry.from_text(role, text, *tags))

    def _unresolved(
        self,
        call: _Call,
        fields: Sequence[FieldDescriptor],
        state: ExtractionState | None,
    ) -> tuple[list[FieldDescriptor], list[CoercionError]]:
        """Required fields still without a value, plus their errors."""
        by_name = {f.name: f for f in fields}
        errors = state.errors if state is not None else []
        for exc in errors:
            if by_name[exc.field_name].is_optional:
                logger.warning(
                    "Dropping optional field '%s': %s",
                    exc.field_name,
                    exc,
                    extra={"session_id": call.session_id},
                )
        unresolved = [
            f for f in fields if not f.is_optional and f.name not in call.values
        ]
        names = {f.name for f in unresolved}
        return unresolved, [e for e in errors if e.field_name in names]

    @staticmethod
    def _incomplete(
        unresolved: list[FieldDescriptor],
        errors: list[CoercionError],
    ) -> GenerationError:
        if len(unresolved) == 1 and len(errors) == 1:
            return errors[0]
        return IncompleteOutput([f.name for f in unresolved], errors)

    def _repair_prompt(
        self,
        call: _Call,
        template: PromptTemplate,
        prompt: str,
        result: _Round,
        unresolved: list[FieldDescriptor],
        errors: list[CoercionError],
        round_no: int,
    ) -> str:
        record_repair_round()
        logger.info(
            "Repair round %d for %s",
            round_no,
            [f.name for f in unresolved],
            extra={"session_id": call.session_id},
        )
        repair = template.render_repair(prompt, result.content, unresolved, errors)
        self._log(call, ROLE_USER, repair, TAG_PROMPT, TAG_REPAIR)
        return repair

    async def _complete_field(self, call: _Call, event: FieldCompletionEvent) -> Any:
        value = await self.pipeline.run(event.field, event.value, call.batch)
        call.values[event.field.name] = value
        return value

    def _finish(self, call: _Call, values: Mapping[str, Any]) -> dict[str, Any]:
        call.transition(GenerationState.COMPLETED)
        record_generation(mode=call.mode, outcome="completed")
        outputs = dict(call.values)
        self._traces.append(Trace(key=self.key, trace={**values, **outputs}))
        logger.info(
            "Generation completed with %d field(s)",
            len(outputs),
            extra={"session_id": call.session_id},
        )
        return outputs

    def _fail(self, call: _Call, exc: Exception) -> None:
        call.transition(GenerationState.FAILED)
        record_generation(mode=call.mode, outcome=type(exc).__name__)
        logger.warning(
            "Generation failed: %s",
            exc,
            extra={"session_id": call.session_id},
        )

    def _new_call(self, session_id: str | None, mode: str) -> _Call:
        session_id = session_id or DEFAULT_SESSION_ID
        return _Call(
            session_id=session_id,
            mode=mode,
            batch=SessionBatch(self.session_log, session_id),
        )

    async def _close_call(self, call: _Call) -> None:
        """Settle an unfinished call and commit its log entries."""
        if not call.finished:
            logger.info(
                "Generation abandoned in state %s",
                call.state,
                extra={"session_id": call.session_id},
            )
            call.transition(GenerationState.FAILED)
            record_generation(mode=call.mode, outcome="abandoned")
        await call.batch.commit()

    # ── Buffered calls ──────────────────────────────────────

    async def _collect(
        self,
        call: _Call,
        prompt: str,
        extractor: StreamingExtractor,
        state: ExtractionState,
        stream: bool,
        options: dict[str, Any] | None,
    ) -> tuple[str, list[ExtractionEvent]]:
        """Run one request to completion and extract it."""
        call.transition(GenerationState.REQUEST_SENT)
        if not stream:
            chunk = await self.transport.complete_once(prompt, options)
            call.transition(GenerationState.EXTRACTING)
            events = extractor.advance(state, chunk.content, is_last_chunk=True)
            return chunk.content, events

        buffer = ""
        events: list[ExtractionEvent] = []
        chunks = self.transport.complete_streaming(prompt, options)
        try:
            async for chunk in chunks:
                if call.state is not GenerationState.EXTRACTING:
                    call.transition(GenerationState.EXTRACTING)
                buffer += chunk.content
                last = chunk.finish_reason is not None
                events.extend(extractor.advance(state, buffer, is_last_chunk=last))
                if last:
                    break
        finally:
            await _aclose(chunks)
        if not state.done:
            events.extend(extractor.advance(state, buffer, is_last_chunk=True))
        return buffer, events

    async def _buffered_round(
        self,
        call: _Call,
        prompt: str,
        fields: Sequence[FieldDescriptor],
        stream: bool,
        options: dict[str, Any] | None,
    ) -> _Round:
        extractor = self._extractor(fields)
        async for attempt in self._retrying():
            with attempt:
                state = extractor.new_state()
                content, events = await self._collect(
                    call, prompt, extractor, state, stream, options
                )

        self._log(call, ROLE_ASSISTANT, content, TAG_RESPONSE)
        for event in events:
            if isinstance(event, FieldCompletionEvent):
                await self._complete_field(call, event)
        return _Round(content=content, state=state)

    async def forward(
        self,
        values: Mapping[str, Any],
        *,
        stream: bool = False,
        session_id: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run the signature and return every output field.

        Args:
            values: Input field values keyed by name.
            stream: Request a streamed response (still aggregated
                into a single result).
            session_id: Session receiving the log entries.
            options: Per-request transport options.

        Returns:
            Output values keyed by field name, in completion order.

        Raises:
            ExtractionFailed: No field marker in the response.
            CoercionError: A lone required field stayed invalid.
            IncompleteOutput: Required fields stayed missing.
            TransportError: The transport failed past its retries.
        """
        self._check_inputs(values)
        call = self._new_call(session_id, "stream" if stream else "once")
        template = self._template()
        prompt = template.render(values)
        fields: Sequence[FieldDescriptor] = self.signature.output_fields

        try:
            self._log(call, ROLE_USER, prompt, TAG_PROMPT)
            round_no = 0
            while True:
                try:
                    result = await self._buffered_round(
                        call, prompt, fields, stream, options
                    )
                except ExtractionFailed as exc:
                    if round_no == 0:
                        raise
                    result = _Round(content=exc.content)

                unresolved, errors = self._unresolved(call, fields, result.state)
                if not unresolved:
                    return self._finish(call, values)
                if round_no == self.max_repair_rounds:
                    raise self._incomplete(unresolved, errors)

                round_no += 1
                prompt = self._repair_prompt(
                    call, template, prompt, result, unresolved, errors, round_no
                )
                fields = unresolved
        except Exception as exc:
            self._fail(call, exc)
            raise
        finally:
            await self._close_call(call)

    # ── Streaming calls ─────────────────────────────────────

    async def _open_stream(
        self,
        prompt: str,
        options: dict[str, Any] | None,
    ) -> tuple[AsyncIterator[CompletionChunk], CompletionChunk | None]:
        """Open a response stream and wait for its first increment.

        Only this part is retried: once an increment was received
        the stream's text may already have been surfaced.
        """
        async for attempt in self._retrying():
            with attempt:
                chunks = self.transport.complete_streaming(prompt, options)
                try:
                    first = await anext(chunks, None)
                except BaseException:
                    await _aclose(chunks)
                    raise
        return chunks, first

    async def _surface(
        self,
        call: _Call,
        events: list[ExtractionEvent],
        round_no: int,
    ) -> list[GenerationDelta]:
        """Turn extraction events into caller-facing deltas.

        Closed fields go through the processor pipeline first; text
        fields were already streamed and yield no extra delta.
        """
        deltas: list[GenerationDelta] = []
        for event in events:
            if isinstance(event, DeltaEvent):
                deltas.append(
                    GenerationDelta(
                        delta={event.field_name: event.partial_value},
                        version=round_no,
                    )
                )
                continue
            value = await self._complete_field(call, event)
            if not event.field.is_text:
                deltas.append(
                    GenerationDelta(delta={event.field.name: value}, version=round_no)
                )
        return deltas

    async def _streamed_round(
        self,
        call: _Call,
        prompt: str,
        fields: Sequence[FieldDescriptor],
        round_no: int,
        options: dict[str, Any] | None,
        result: _Round,
    ) -> AsyncIterator[GenerationDelta]:
        extractor = self._extractor(fields)
        state = result.state = extractor.new_state()
        call.transition(GenerationState.REQUEST_SENT)
        chunks, chunk = await self._open_stream(prompt, options)
        call.transition(GenerationState.EXTRACTING)

        buffer = ""
        try:
            while chunk is not None:
                buffer += chunk.content
                result.content = buffer
                if chunk.finish_reason is not None:
                    break
                events = extractor.advance(state, buffer)
                for delta in await self._surface(call, events, round_no):
                    yield delta
                chunk = await anext(chunks, None)
        finally:
            await _aclose(chunks)

        # Processor entries of the closing fields follow the response entry.
        self._log(call, ROLE_ASSISTANT, buffer, TAG_RESPONSE)
        events = extractor.advance(state, buffer, is_last_chunk=True)
        for delta in await self._surface(call, events, round_no):
            yield delta

    async def streaming_forward(
        self,
        values: Mapping[str, Any],
        *,
        session_id: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[GenerationDelta]:
        """Run the signature and yield output deltas as they arrive.

        Text fields are yielded as append-only string slices;
        other fields are yielded whole once closed and processed.
        Abandoning the iterator closes the transport stream and
        counts the call as abandoned.  Session log entries are
        committed once the iterator finished or was closed.

        Args:
            values: Input field values keyed by name.
            session_id: Session receiving the log entries.
            options: Per-request transport options.

        Yields:
            ``GenerationDelta`` objects in emission order.

        Raises:
            Same errors as :meth:`forward`.
        """
        self._check_inputs(values)
        call = self._new_call(session_id, "streaming_forward")
        template = self._template()
        prompt = template.render(values)
        fields: Sequence[FieldDescriptor] = self.signature.output_fields

        try:
            self._log(call, ROLE_USER, prompt, TAG_PROMPT)
            for round_no in range(self.max_repair_rounds + 1):
                result = _Round()
                try:
                    async with contextlib.aclosing(
                        self._streamed_round(
                            call, prompt, fields, round_no, options, result
                        )
                    ) as deltas:
                        async for delta in deltas:
                            yield delta
                except ExtractionFailed:
                    if round_no == 0:
                        raise
                    result.state = None

                unresolved, errors = self._unresolved(call, fields, result.state)
                if not unresolved:
                    self._finish(call, values)
                    return
                if round_no == self.max_repair_rounds:
                    raise self._incomplete(unresolved, errors)

                prompt = self._repair_prompt(
                    call, template, prompt, result, unresolved, errors, round_no + 1
                )
                fields = unresolved
        except Exception as exc:
            self._fail(call, exc)
            raise
        finally:
            await self._close_call(call)
