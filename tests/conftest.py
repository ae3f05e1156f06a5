"""Shared pytest fixtures for the SigStream test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fakes import FakeTransport
from httpx import ASGITransport, AsyncClient

from sigstream.api.deps import get_demos, get_session_log, get_transport_factory
from sigstream.main import app
from sigstream.services.session_log import InMemorySessionLog


@pytest.fixture
def session_log() -> InMemorySessionLog:
    """Return a fresh in-memory session log."""
    return InMemorySessionLog()


# ── HTTP client ─────────────────────────────────────────────────────────────


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Transport handed to the API routes; tests set ``responses``."""
    return FakeTransport("Output: ok")


@pytest.fixture
async def client(
    fake_transport: FakeTransport,
    session_log: InMemorySessionLog,
) -> AsyncIterator[AsyncClient]:
    """
    Yield an async HTTP client bound to the FastAPI app.

    The transport, session log and demos dependencies are replaced
    by in-memory fakes for the duration of the test.

    Usage::

        async def test_something(client: AsyncClient):
            response = await client.get("/api/v1/health")
    """
    app.dependency_overrides[get_transport_factory] = lambda: (
        lambda model: fake_transport
    )
    app.dependency_overrides[get_session_log] = lambda: session_log
    app.dependency_overrides[get_demos] = lambda: []
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(
            transport=transport,
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
