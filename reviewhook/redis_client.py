"""Async Redis client shared by the deduplicator, queue, worker and notifier."""

from redis.asyncio import ConnectionPool, Redis

from .config import settings

_pool = ConnectionPool.from_url(settings.redis_url, max_connections=50, decode_responses=True)


def get_redis_client() -> Redis:
    """Get an async Redis client from the shared pool."""
    return Redis(connection_pool=_pool)


async def close_redis() -> None:
    """Drop pooled connections; call once when the process shuts down."""
    await _pool.disconnect()
