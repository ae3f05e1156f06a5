"""
Model transport collaborators.

The orchestrator only depends on the ``ModelTransport`` protocol: a
one-shot completion and a lazy, finite, non-restartable stream of
``CompletionChunk`` increments.  ``LiteLLMTransport`` implements it
on top of ``litellm.acompletion`` so that any provider LiteLLM
supports can back a generator.

Provider exceptions are wrapped in ``TransportError`` whose ``kind``
is the provider exception class name, so callers see the original
failure kind unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

import litellm

from sigstream.core.config import get_settings
from sigstream.core.errors import TransportError
from sigstream.schemas.events import CompletionChunk

logger = logging.getLogger(__name__)

# Provider errors that will fail the same way on every attempt.
_NON_RETRYABLE: tuple[type[Exception], ...] = (
    litellm.AuthenticationError,
    litellm.BadRequestError,
    litellm.NotFoundError,
)


@runtime_checkable
class ModelTransport(Protocol):
    """What the orchestrator needs from a model provider."""

    async def complete_once(
        self,
        prompt: str,
        options: dict[str, Any] | None = None,
    ) -> CompletionChunk:
        """Return the whole response as a single chunk."""
        ...

    def complete_streaming(
        self,
        prompt: str,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[CompletionChunk]:
        """Return the response as a stream of increments."""
        ...


def _wrap(exc: Exception) -> TransportError:
    return TransportError(
        type(exc).__name__,
        str(exc),
        retryable=not isinstance(exc, _NON_RETRYABLE),
    )


class LiteLLMTransport:
    """``ModelTransport`` backed by ``litellm.acompletion``.

    Args:
        model: LiteLLM model identifier; defaults to
            ``DEFAULT_MODEL``.
        api_key: Explicit key; defaults to the key configured for
            the model's provider.
        **defaults: Extra completion kwargs applied to every
            request (overridden by per-request options).
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        **defaults: Any,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.DEFAULT_MODEL
        self._api_key = api_key or settings.api_key_for(self.model)
        self._defaults: dict[str, Any] = {
            "temperature": settings.DEFAULT_TEMPERATURE,
            "max_tokens": settings.DEFAULT_MAX_TOKENS,
            **defaults,
        }

    def _request(
        self,
        prompt: str,
        options: dict[str, Any] | None,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {**self._defaults, **(options or {})}
        kwargs = {k: v for k, v in kwargs.items() if v is not None}
        kwargs.update(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            stream=stream,
        )
        if self._api_key:
            kwargs["api_key"] = self._api_key
        return kwargs

    async def complete_once(
        self,
        prompt: str,
        options: dict[str, Any] | None = None,
    ) -> CompletionChunk:
        try:
            response = await litellm.acompletion(
                **self._request(prompt, options, stream=False)
            )
        except Exception as exc:
            logger.warning("Completion request to %s failed: %s", self.model, exc)
            raise _wrap(exc) from exc

        choice = response.choices[0]
        return CompletionChunk(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or "stop",
        )

    async def complete_streaming(
        self,
        prompt: str,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[CompletionChunk]:
        try:
            response = await litellm.acompletion(
                **self._request(prompt, options, stream=True)
            )
        except Exception as exc:
            logger.warning("Streaming request to %s failed: %s", self.model, exc)
            raise _wrap(exc) from exc

        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                yield CompletionChunk(
                    content=getattr(choice.delta, "content", None) or "",
                    finish_reason=choice.finish_reason,
                )
        except Exception as exc:
            logger.warning("Stream from %s broke off: %s", self.model, exc)
            raise _wrap(exc) from exc
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()
