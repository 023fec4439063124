"""Review job queues: Redis Streams for worker pools, detached tasks for one process."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, cast

from redis.asyncio import Redis

from .config import settings
from .errors import QueueFullError
from .redis_client import get_redis_client
from .router import ReviewJob

logger = logging.getLogger(__name__)

STREAM_REVIEWS = "stream:jobs:reviews"
STREAM_DLQ = "stream:dlq:reviews"
CONSUMER_GROUP = "review-workers"


class JobQueue(ABC):
    @abstractmethod
    async def enqueue(self, job: ReviewJob) -> str:
        """Durably hand off a job; returns a queue-specific message id."""


class RedisStreamQueue(JobQueue):
    def __init__(self, redis: Redis | None = None, *, max_depth: int | None = None) -> None:
        self._redis = redis or get_redis_client()
        self._max_depth = max_depth or settings.redis_queue_max_depth

    async def _ensure_capacity(self) -> None:
        """Workers delete entries once acked, so XLEN counts waiting and in-flight jobs."""
        length = await self._redis.xlen(STREAM_REVIEWS)
        if length >= self._max_depth:
            raise QueueFullError(f"Stream {STREAM_REVIEWS} at capacity ({length})")

    async def enqueue(self, job: ReviewJob) -> str:
        await self._ensure_capacity()
        return await self._redis.xadd(STREAM_REVIEWS, cast(dict[Any, Any], job.to_dict()))


class InlineQueue(JobQueue):
    """Runs each job as a detached task in this process.

    Tasks are held until they finish, so cancelling the HTTP request that
    enqueued a job does not cancel the review.
    """

    def __init__(self, runner: Callable[[ReviewJob], Awaitable[Any]]) -> None:
        self._runner = runner
        self._tasks: set[asyncio.Task[Any]] = set()

    async def _run(self, job: ReviewJob) -> Any:
        # Nothing awaits these tasks, so failures end here.
        try:
            return await self._runner(job)
        except Exception:
            logger.exception("Inline review job for delivery %s failed", job.delivery_id)
            return None

    async def enqueue(self, job: ReviewJob) -> str:
        task = asyncio.get_running_loop().create_task(
            self._run(job), name=f"review:{job.delivery_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task.get_name()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def build_queue(
    runner: Callable[[ReviewJob], Awaitable[Any]], backend: str | None = None
) -> JobQueue:
    backend = backend or settings.queue_backend
    if backend == "inline":
        return InlineQueue(runner)
    return RedisStreamQueue()
