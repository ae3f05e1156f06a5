"""Tests for the LiteLLM-backed model transport."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from sigstream.core.errors import TransportError
from sigstream.services.transport import LiteLLMTransport, ModelTransport


def completion(content: str, finish_reason: str | None = "stop"):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)]
    )


class FakeStream:
    """Async iterator standing in for a LiteLLM ``CustomStreamWrapper``."""

    def __init__(self, pieces, error: Exception | None = None):
        self._pieces = list(pieces)
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._pieces:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        content, finish_reason = self._pieces.pop(0)
        delta = SimpleNamespace(content=content)
        return SimpleNamespace(
            choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)]
        )

    async def aclose(self):
        self.closed = True


class TestLiteLLMTransport:
    """Request building and response mapping."""

    def test_is_model_transport(self):
        """The class satisfies the transport protocol."""
        assert isinstance(LiteLLMTransport(model="gpt-4o-mini"), ModelTransport)

    async def test_complete_once(self):
        """The whole answer is returned as a single chunk."""
        transport = LiteLLMTransport(model="gpt-4o-mini", api_key="sk-test")
        with patch(
            "sigstream.services.transport.litellm.acompletion",
            new=AsyncMock(return_value=completion("Output: hi")),
        ) as mock_acompletion:
            chunk = await transport.complete_once("prompt", {"temperature": 0.1})

        assert chunk.content == "Output: hi"
        assert chunk.finish_reason == "stop"
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert kwargs["temperature"] == 0.1
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["stream"] is False
        assert "max_tokens" not in kwargs

    async def test_complete_streaming(self):
        """Stream chunks are mapped in order and the stream is closed."""
        stream = FakeStream([("Output: ", None), ("hi", None), ("", "stop")])
        transport = LiteLLMTransport(model="gpt-4o-mini")
        with patch(
            "sigstream.services.transport.litellm.acompletion",
            new=AsyncMock(return_value=stream),
        ) as mock_acompletion:
            chunks = [c async for c in transport.complete_streaming("prompt")]

        assert [c.content for c in chunks] == ["Output: ", "hi", ""]
        assert chunks[-1].finish_reason == "stop"
        assert mock_acompletion.call_args.kwargs["stream"] is True
        assert stream.closed

    async def test_request_error_is_wrapped(self):
        """Provider exceptions become ``TransportError`` with their kind."""
        transport = LiteLLMTransport(model="gpt-4o-mini")
        with patch(
            "sigstream.services.transport.litellm.acompletion",
            new=AsyncMock(side_effect=TimeoutError("too slow")),
        ):
            with pytest.raises(TransportError) as exc_info:
                await transport.complete_once("prompt")

        assert exc_info.value.kind == "TimeoutError"
        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, TimeoutError)

    async def test_non_retryable_kinds(self):
        """Listed provider errors are marked non-retryable."""
        transport = LiteLLMTransport(model="gpt-4o-mini")
        with (
            patch("sigstream.services.transport._NON_RETRYABLE", (PermissionError,)),
            patch(
                "sigstream.services.transport.litellm.acompletion",
                new=AsyncMock(side_effect=PermissionError("denied")),
            ),
        ):
            with pytest.raises(TransportError) as exc_info:
                await transport.complete_once("prompt")

        assert exc_info.value.retryable is False

    async def test_broken_stream_is_wrapped(self):
        """A failure mid-stream is wrapped and the stream closed."""
        stream = FakeStream([("Output: ", None)], error=ConnectionError("reset"))
        transport = LiteLLMTransport(model="gpt-4o-mini")
        received = []
        with patch(
            "sigstream.services.transport.litellm.acompletion",
            new=AsyncMock(return_value=stream),
        ):
            with pytest.raises(TransportError) as exc_info:
                async for chunk in transport.complete_streaming("prompt"):
                    received.append(chunk.content)

        assert received == ["Output: "]
        assert exc_info.value.kind == "ConnectionError"
        assert stream.closed
