"""Shared key-value stores with atomic check-and-set.

The Redis store is the one to run with more than one web instance. The memory
store keeps state in the process and is only correct for a single instance.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod

from redis.asyncio import Redis

from .config import settings
from .redis_client import get_redis_client


class KeyValueStore(ABC):
    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set ``key`` unless it exists. Returns True if this call set it."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...


class RedisStore(KeyValueStore):
    def __init__(self, redis: Redis | None = None) -> None:
        self._redis = redis or get_redis_client()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return await self._redis.set(key, value, nx=True, ex=ttl_seconds) is True

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(key))


class MemoryStore(KeyValueStore):
    def __init__(self, clock=time.monotonic) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry[1] <= self._clock():
            del self._entries[key]
            return False
        return True

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            if self._live(key):
                return False
            self._entries[key] = (value, self._clock() + ttl_seconds)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._live(key)


def build_store(backend: str | None = None) -> KeyValueStore:
    backend = backend or settings.store_backend
    if backend == "memory":
        return MemoryStore()
    return RedisStore()
