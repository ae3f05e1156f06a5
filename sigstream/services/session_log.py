"""
Append-only session logs.

A session log records, per session, the prompts sent, the responses
received and one ``processor`` entry per closed field.  It is the
only resource shared between generation calls.

Generation calls never append to the log directly.  Each call
collects its entries in a ``SessionBatch`` and commits them with a
single atomic ``extend`` when the call ends (completed, failed or
abandoned).  Concurrent calls on the same session therefore land as
contiguous blocks, ordered by call completion.  A streaming call's
entries are committed once its stream has finished or was closed.

**Backends**

===============  ====================================
``memory``       Default.  Per-process, lock-guarded.
``redis``        Cross-process.  One list per session.
===============  ====================================

Select via the ``SESSION_LOG_BACKEND`` env-var.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import redis

from sigstream.core.config import Settings, get_settings
from sigstream.core.constants import REDIS_PREFIX_SESSION_LOG
from sigstream.core.redis import get_redis_client
from sigstream.schemas.session import LogEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionLog(Protocol):
    """Interface every session log backend implements."""

    async def append(self, session_id: str, entry: LogEntry) -> None:
        """Append *entry* to the session's history."""
        ...

    async def extend(self, session_id: str, entries: Sequence[LogEntry]) -> None:
        """Append *entries* as one uninterrupted block."""
        ...

    async def last_entry(self, session_id: str) -> LogEntry | None:
        """Return the most recent entry, or ``None``."""
        ...

    async def history(self, session_id: str) -> list[LogEntry]:
        """Return all entries of the session, oldest first."""
        ...


class InMemorySessionLog:
    """Thread-safe in-process session log."""

    def __init__(self) -> None:
        self._entries: dict[str, list[LogEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    async def append(self, session_id: str, entry: LogEntry) -> None:
        await self.extend(session_id, [entry])

    async def extend(self, session_id: str, entries: Sequence[LogEntry]) -> None:
        with self._lock:
            self._entries[session_id].extend(entries)

    async def last_entry(self, session_id: str) -> LogEntry | None:
        with self._lock:
            entries = self._entries.get(session_id)
            return entries[-1] if entries else None

    async def history(self, session_id: str) -> list[LogEntry]:
        with self._lock:
            return list(self._entries.get(session_id, ()))

    def clear(self, session_id: str | None = None) -> None:
        """Drop one session, or every session (useful in tests)."""
        with self._lock:
            if session_id is None:
                self._entries.clear()
            else:
                self._entries.pop(session_id, None)


class RedisSessionLog:
    """Redis-backed session log.

    Each session is a Redis list of JSON-serialised entries under
    ``session_log:<session_id>``.  A block of entries is pushed by
    one ``RPUSH`` inside a ``MULTI``/``EXEC`` pipeline together with
    the TTL refresh, so blocks from concurrent writers never
    interleave.  The blocking client calls run in a worker thread.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        ttl: int = 86400,
    ) -> None:
        self._client = client
        self._ttl = ttl

    def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis_client()
        return self._client

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{REDIS_PREFIX_SESSION_LOG}{session_id}"

    def _push(self, session_id: str, entries: Sequence[LogEntry]) -> None:
        key = self._key(session_id)
        pipe = self._redis().pipeline(transaction=True)
        pipe.rpush(key, *(entry.model_dump_json() for entry in entries))
        pipe.expire(key, self._ttl)
        pipe.execute()

    async def append(self, session_id: str, entry: LogEntry) -> None:
        await self.extend(session_id, [entry])

    async def extend(self, session_id: str, entries: Sequence[LogEntry]) -> None:
        if not entries:
            return
        await asyncio.to_thread(self._push, session_id, entries)

    async def last_entry(self, session_id: str) -> LogEntry | None:
        raw = await asyncio.to_thread(self._redis().lindex, self._key(session_id), -1)
        if raw is None:
            return None
        return LogEntry.model_validate_json(raw)

    async def history(self, session_id: str) -> list[LogEntry]:
        raw_entries = await asyncio.to_thread(
            self._redis().lrange, self._key(session_id), 0, -1
        )
        return [LogEntry.model_validate_json(raw) for raw in raw_entries]


class SessionBatch:
    """Entries of one generation call, committed as a single block.

    Usage::

        batch = SessionBatch(session_log, "session-1")
        batch.add(LogEntry.from_text("user", prompt, "prompt"))
        ...
        await batch.commit()
    """

    def __init__(self, log: SessionLog, session_id: str) -> None:
        self.log = log
        self.session_id = session_id
        self._pending: list[LogEntry] = []

    @property
    def pending(self) -> list[LogEntry]:
        """Entries added since the last commit."""
        return list(self._pending)

    def add(self, entry: LogEntry) -> None:
        self._pending.append(entry)

    async def commit(self) -> None:
        """Write the pending entries to the log in one ``extend``."""
        if not self._pending:
            return
        entries, self._pending = self._pending, []
        await self.log.extend(self.session_id, entries)
        logger.debug(
            "Committed %d session log entries",
            len(entries),
            extra={"session_id": self.session_id},
        )


def build_session_log(settings: Settings | None = None) -> SessionLog:
    """Create the session log selected by ``SESSION_LOG_BACKEND``.

    Args:
        settings: Optional settings; defaults to ``get_settings()``.

    Returns:
        A ``SessionLog`` implementation.
    """
    settings = settings or get_settings()
    if settings.SESSION_LOG_BACKEND == "redis":
        logger.info(
            "Session log: RedisSessionLog (host=%s, ttl=%ds)",
            settings.REDIS_HOST,
            settings.SESSION_LOG_TTL,
        )
        return RedisSessionLog(ttl=settings.SESSION_LOG_TTL)

    logger.info("Session log: InMemorySessionLog")
    return InMemorySessionLog()
