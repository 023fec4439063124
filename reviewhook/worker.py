"""Redis Streams worker pool running the review pipeline."""

from __future__ import annotations

import asyncio
import logging
import signal
import socket
import time
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from .config import settings
from .pipeline import ReviewPipeline
from .queue import CONSUMER_GROUP, STREAM_DLQ, STREAM_REVIEWS
from .redis_client import get_redis_client
from .router import ReviewJob

logger = logging.getLogger(__name__)

MAX_JOB_ATTEMPTS = 3


@dataclass
class JobMessage:
    msg_id: str
    stream: str
    payload: dict[str, Any]


class ReviewWorker:
    """Consumes review jobs from a Redis Stream consumer group."""

    def __init__(
        self,
        pipeline: ReviewPipeline | None = None,
        *,
        redis: Redis | None = None,
        concurrency: int | None = None,
        group: str = CONSUMER_GROUP,
    ) -> None:
        self.pipeline = pipeline or ReviewPipeline()
        self.redis = redis or get_redis_client()
        self.concurrency = concurrency or settings.worker_concurrency
        self.group = group
        self.consumer_prefix = f"{socket.gethostname()}-{int(time.time())}"
        self.shutdown_requested = False

    async def setup(self) -> None:
        try:
            await self.redis.xgroup_create(STREAM_REVIEWS, self.group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    def _install_signal_handlers(self) -> None:
        def _handle_signal(signum: int, frame: object) -> None:
            logger.info("Received signal %s, finishing in-flight jobs", signum)
            self.shutdown_requested = True

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)

    async def _next_job(self, consumer: str) -> JobMessage | None:
        result = await self.redis.xreadgroup(
            groupname=self.group,
            consumername=consumer,
            streams={STREAM_REVIEWS: ">"},
            count=1,
            block=1000,
        )
        if not result:
            return None
        stream_name, messages = result[0]
        msg_id, payload = messages[0]
        return JobMessage(msg_id=msg_id, stream=stream_name, payload=payload)

    async def _ack(self, job: JobMessage) -> None:
        # Finished entries leave the stream so its length stays the live backlog.
        await self.redis.xack(job.stream, self.group, job.msg_id)
        await self.redis.xdel(job.stream, job.msg_id)

    async def _to_dlq(self, job: JobMessage, error: str) -> None:
        payload = dict(job.payload)
        payload["error"] = error
        await self.redis.xadd(STREAM_DLQ, payload)
        await self._ack(job)

    async def _requeue(self, job: JobMessage, retry_count: int) -> None:
        payload = dict(job.payload)
        payload["retry_count"] = str(retry_count)
        await self.redis.xadd(job.stream, payload)
        await self._ack(job)

    async def handle(self, job: JobMessage) -> None:
        try:
            review_job = ReviewJob.from_dict(job.payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Malformed review job %s: %s", job.msg_id, exc)
            await self._to_dlq(job, f"malformed job: {exc}")
            return

        try:
            outcome = await self.pipeline.run(review_job)
        except Exception as exc:
            retry_count = review_job.retry_count + 1
            logger.exception("Review job %s failed (attempt %d)", job.msg_id, retry_count)
            if retry_count >= MAX_JOB_ATTEMPTS:
                await self._to_dlq(job, str(exc))
            else:
                await self._requeue(job, retry_count)
            return

        logger.info(
            "Delivery %s finished: %s%s",
            review_job.delivery_id,
            outcome.status.value,
            f" ({outcome.reason})" if outcome.reason else "",
        )
        await self._ack(job)

    async def _consume(self, index: int) -> None:
        consumer = f"{self.consumer_prefix}-{index}"
        while not self.shutdown_requested:
            job = await self._next_job(consumer)
            if job is not None:
                await self.handle(job)

    async def run_forever(self) -> None:
        await self.setup()
        self._install_signal_handlers()
        logger.info("Review worker started with %d consumers", self.concurrency)
        await asyncio.gather(*(self._consume(i) for i in range(self.concurrency)))
        await self.pipeline.emitter.drain()
