"""
Redis connection management.

Provides a shared ``ConnectionPool`` and a convenience factory
for ``redis.Redis`` clients used by the Redis session log.
"""

from __future__ import annotations

import redis

from sigstream.core.config import get_settings

# ── Global Redis connection pool ────────────────────────

_redis_pool: redis.ConnectionPool | None = None


def get_redis_pool() -> redis.ConnectionPool:
    """Return a module-level Redis ``ConnectionPool``.

    Reusing a single pool avoids the overhead of creating
    and tearing down connections per request.

    Returns:
        A shared ``ConnectionPool`` instance.
    """
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


def get_redis_client() -> redis.Redis:
    """Return a Redis client on the shared pool.

    The caller is responsible for calling ``client.close()``
    when finished.

    Returns:
        A ``redis.Redis`` instance on the shared pool.
    """
    return redis.Redis(connection_pool=get_redis_pool())
