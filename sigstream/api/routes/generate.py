"""Generation routes (buffered and NDJSON streaming)."""

from __future__ import annotations

import contextlib
import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from sigstream.api.deps import (
    TransportFactory,
    get_demos,
    get_session_log,
    get_transport_factory,
)
from sigstream.core.errors import (
    CoercionError,
    ExtractionFailed,
    GenerationError,
    IncompleteOutput,
    TransportError,
)
from sigstream.schemas import ErrorResponse, GenerateRequest, GenerateResponse
from sigstream.services.demos import ProgramDemos
from sigstream.services.generator import Generator
from sigstream.services.session_log import SessionLog

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])


def _error_payload(exc: GenerationError) -> ErrorResponse:
    """Describe *exc* as an ``ErrorResponse``."""
    details: dict[str, Any] = {}
    if isinstance(exc, ExtractionFailed):
        details["expected"] = exc.expected
    elif isinstance(exc, CoercionError):
        details.update(field_name=exc.field_name, expected_type=exc.expected_type)
    elif isinstance(exc, IncompleteOutput):
        details.update(
            missing_fields=exc.missing_fields,
            errors=[str(e) for e in exc.errors],
        )
    elif isinstance(exc, TransportError):
        details.update(kind=exc.kind, retryable=exc.retryable)
    return ErrorResponse(error=type(exc).__name__, message=str(exc), details=details)


def _http_error(exc: GenerationError) -> HTTPException:
    status_code = 502 if isinstance(exc, TransportError) else 422
    return HTTPException(
        status_code=status_code,
        detail=_error_payload(exc).model_dump(),
    )


def _build_generator(
    request: GenerateRequest,
    make_transport: TransportFactory,
    session_log: SessionLog,
    demos: list[ProgramDemos],
) -> Generator:
    generator = Generator(
        request.to_signature(),
        make_transport(request.model),
        session_log=session_log,
    )
    generator.set_demos(demos)
    return generator


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def generate(
    request: GenerateRequest,
    make_transport: TransportFactory = Depends(get_transport_factory),
    session_log: SessionLog = Depends(get_session_log),
    demos: list[ProgramDemos] = Depends(get_demos),
) -> GenerateResponse:
    """Run a signature and return every output field at once."""
    session_id = request.session_id or uuid.uuid4().hex
    generator = _build_generator(request, make_transport, session_log, demos)
    try:
        outputs = await generator.forward(
            request.inputs,
            session_id=session_id,
            options=request.options.to_flat_dict(),
        )
    except GenerationError as exc:
        raise _http_error(exc) from exc
    return GenerateResponse(outputs=outputs, session_id=session_id)


async def _ndjson_deltas(
    generator: Generator,
    request: GenerateRequest,
    session_id: str,
) -> AsyncIterator[str]:
    deltas = generator.streaming_forward(
        request.inputs,
        session_id=session_id,
        options=request.options.to_flat_dict(),
    )
    try:
        async with contextlib.aclosing(deltas):
            async for delta in deltas:
                line = {"delta": delta.delta, "version": delta.version}
                yield json.dumps(line, ensure_ascii=False, default=str) + "\n"
    except GenerationError as exc:
        logger.warning("Streaming generation failed: %s", exc)
        yield _error_payload(exc).model_dump_json() + "\n"


@router.post("/generate/stream")
async def generate_stream(
    request: GenerateRequest,
    make_transport: TransportFactory = Depends(get_transport_factory),
    session_log: SessionLog = Depends(get_session_log),
    demos: list[ProgramDemos] = Depends(get_demos),
) -> StreamingResponse:
    """Run a signature and stream output deltas as NDJSON.

    Each line is ``{"delta": {...}, "version": n}``.  A failed call
    ends with one ``ErrorResponse`` line.
    """
    session_id = request.session_id or uuid.uuid4().hex
    generator = _build_generator(request, make_transport, session_log, demos)
    return StreamingResponse(
        _ndjson_deltas(generator, request, session_id),
        media_type="application/x-ndjson",
        headers={"X-Session-ID": session_id},
    )
