"""Tests for the session log backends."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

from sigstream.core.config import Settings
from sigstream.schemas import LogEntry
from sigstream.services.session_log import (
    InMemorySessionLog,
    RedisSessionLog,
    SessionBatch,
    SessionLog,
    build_session_log,
)


def entry(text: str, *tags: str) -> LogEntry:
    return LogEntry.from_text("user", text, *tags)


class TestInMemorySessionLog:
    """Per-process backend."""

    async def test_append_and_history(self):
        """Entries come back oldest first, per session."""
        log = InMemorySessionLog()
        await log.append("a", entry("one"))
        await log.append("a", entry("two"))
        await log.append("b", entry("other"))

        assert [e.rendered for e in await log.history("a")] == ["one", "two"]
        assert (await log.last_entry("a")).rendered == "two"

    async def test_extend(self):
        """A block of entries is appended in order."""
        log = InMemorySessionLog()
        await log.append("a", entry("zero"))
        await log.extend("a", [entry("one"), entry("two")])

        assert [e.rendered for e in await log.history("a")] == ["zero", "one", "two"]

    async def test_unknown_session(self):
        """Unknown sessions are empty."""
        log = InMemorySessionLog()
        assert await log.history("nope") == []
        assert await log.last_entry("nope") is None

    async def test_history_is_a_copy(self):
        """Mutating the returned list does not touch the log."""
        log = InMemorySessionLog()
        await log.append("a", entry("one"))
        (await log.history("a")).clear()
        assert len(await log.history("a")) == 1

    async def test_clear(self):
        """One session or all sessions can be dropped."""
        log = InMemorySessionLog()
        await log.append("a", entry("one"))
        await log.append("b", entry("two"))

        log.clear("a")
        assert await log.history("a") == []
        assert len(await log.history("b")) == 1

        log.clear()
        assert await log.history("b") == []

    def test_satisfies_protocol(self):
        assert isinstance(InMemorySessionLog(), SessionLog)


class TestRedisSessionLog:
    """Redis list backend with a mocked client."""

    async def test_append_pushes_json_and_refreshes_ttl(self):
        """RPUSH and EXPIRE run in one transaction."""
        client = MagicMock()
        pipe = client.pipeline.return_value
        log = RedisSessionLog(client=client, ttl=60)
        item = entry("hello", "processor")

        await log.append("s1", item)

        client.pipeline.assert_called_once_with(transaction=True)
        pipe.rpush.assert_called_once_with("session_log:s1", item.model_dump_json())
        pipe.expire.assert_called_once_with("session_log:s1", 60)
        pipe.execute.assert_called_once()

    async def test_extend_pushes_block(self):
        """A block is written with a single RPUSH."""
        client = MagicMock()
        pipe = client.pipeline.return_value
        log = RedisSessionLog(client=client, ttl=60)
        items = [entry("one"), entry("two")]

        await log.extend("s1", items)

        pipe.rpush.assert_called_once_with(
            "session_log:s1", *(item.model_dump_json() for item in items)
        )
        pipe.execute.assert_called_once()

    async def test_extend_empty_is_noop(self):
        client = MagicMock()
        await RedisSessionLog(client=client).extend("s1", [])
        client.pipeline.assert_not_called()

    async def test_client_calls_run_in_thread(self):
        """Blocking client calls are moved off the event loop."""
        client = MagicMock()
        client.lrange.return_value = []
        log = RedisSessionLog(client=client)

        with patch.object(asyncio, "to_thread", wraps=asyncio.to_thread) as to_thread:
            await log.append("s1", entry("one"))
            await log.history("s1")

        assert to_thread.call_count == 2

    async def test_last_entry(self):
        """The tail of the list is decoded into a ``LogEntry``."""
        client = MagicMock()
        client.lindex.return_value = entry("latest", "processor").model_dump_json()
        log = RedisSessionLog(client=client)

        last = await log.last_entry("s1")

        client.lindex.assert_called_once_with("session_log:s1", -1)
        assert last.rendered == "latest"
        assert last.tags == ["processor"]

    async def test_last_entry_missing(self):
        """An empty list yields ``None``."""
        client = MagicMock()
        client.lindex.return_value = None
        assert await RedisSessionLog(client=client).last_entry("s1") is None

    async def test_history(self):
        """All entries are decoded in order."""
        client = MagicMock()
        client.lrange.return_value = [
            entry("one").model_dump_json(),
            entry("two").model_dump_json(),
        ]
        log = RedisSessionLog(client=client)

        assert [e.rendered for e in await log.history("s1")] == ["one", "two"]
        client.lrange.assert_called_once_with("session_log:s1", 0, -1)


class TestSessionBatch:
    """Per-call buffering of log entries."""

    async def test_commit_writes_block(self):
        """Pending entries reach the log only on commit."""
        log = InMemorySessionLog()
        batch = SessionBatch(log, "s")
        batch.add(entry("one"))
        batch.add(entry("two"))

        assert await log.history("s") == []
        await batch.commit()

        assert [e.rendered for e in await log.history("s")] == ["one", "two"]
        assert batch.pending == []

    async def test_commit_is_idempotent(self):
        """A second commit writes nothing new."""
        log = InMemorySessionLog()
        batch = SessionBatch(log, "s")
        batch.add(entry("one"))

        await batch.commit()
        await batch.commit()

        assert len(await log.history("s")) == 1

    async def test_batches_do_not_interleave(self):
        """Each batch lands as one contiguous block in commit order."""
        log = InMemorySessionLog()
        slow = SessionBatch(log, "s")
        fast = SessionBatch(log, "s")
        slow.add(entry("slow prompt"))
        fast.add(entry("fast prompt"))
        fast.add(entry("fast response"))
        slow.add(entry("slow response"))

        await fast.commit()
        await slow.commit()

        assert [e.rendered for e in await log.history("s")] == [
            "fast prompt",
            "fast response",
            "slow prompt",
            "slow response",
        ]


class TestBuildSessionLog:
    """Backend selection from settings."""

    def test_memory_default(self):
        """The in-memory backend is the default."""
        settings = Settings(_env_file=None)
        assert isinstance(build_session_log(settings), InMemorySessionLog)

    def test_redis_backend(self):
        """``redis`` selects the Redis backend with the configured TTL."""
        settings = Settings(
            _env_file=None, SESSION_LOG_BACKEND="redis", SESSION_LOG_TTL=120
        )
        log = build_session_log(settings)
        assert isinstance(log, RedisSessionLog)
        assert log._ttl == 120
