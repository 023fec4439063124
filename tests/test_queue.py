import asyncio

import pytest
from conftest import pull_request_payload

from reviewhook.errors import QueueFullError
from reviewhook.pipeline import PipelineOutcome, PipelineStatus
from reviewhook.queue import STREAM_DLQ, STREAM_REVIEWS, InlineQueue, RedisStreamQueue
from reviewhook.router import ReviewJob, route_event
from reviewhook.worker import MAX_JOB_ATTEMPTS, JobMessage, ReviewWorker


class FakeRedis:
    """Just enough of the stream API for the queue and worker."""

    def __init__(self) -> None:
        self.streams: dict[str, list[tuple[str, dict]]] = {}
        self.acked: list[str] = []
        self._next_id = 0

    async def xlen(self, stream: str) -> int:
        return len(self.streams.get(stream, []))

    async def xadd(self, stream: str, fields: dict) -> str:
        entries = self.streams.setdefault(stream, [])
        self._next_id += 1
        msg_id = f"{self._next_id}-0"
        entries.append((msg_id, dict(fields)))
        return msg_id

    async def xack(self, stream: str, group: str, msg_id: str) -> int:
        self.acked.append(msg_id)
        return 1

    async def xdel(self, stream: str, msg_id: str) -> int:
        entries = self.streams.get(stream, [])
        kept = [entry for entry in entries if entry[0] != msg_id]
        if stream in self.streams:
            self.streams[stream] = kept
        return len(entries) - len(kept)


class FakePipeline:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.jobs: list[ReviewJob] = []

    async def run(self, job: ReviewJob) -> PipelineOutcome:
        self.jobs.append(job)
        if self.error is not None:
            raise self.error
        return PipelineOutcome(PipelineStatus.COMPLETED, review_id="r-1")


def _job() -> ReviewJob:
    job = route_event("pull_request", pull_request_payload(), "d-1").job
    assert job is not None
    return job


@pytest.mark.asyncio
async def test_stream_queue_appends_job() -> None:
    redis = FakeRedis()
    queue = RedisStreamQueue(redis, max_depth=10)

    msg_id = await queue.enqueue(_job())

    assert msg_id == "1-0"
    (_, fields), = redis.streams[STREAM_REVIEWS]
    assert ReviewJob.from_dict(fields) == _job()


@pytest.mark.asyncio
async def test_stream_queue_rejects_when_full() -> None:
    redis = FakeRedis()
    queue = RedisStreamQueue(redis, max_depth=2)
    await queue.enqueue(_job())
    await queue.enqueue(_job())

    with pytest.raises(QueueFullError):
        await queue.enqueue(_job())


@pytest.mark.asyncio
async def test_inline_queue_runs_job_in_background() -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    done: list[str] = []

    async def runner(job: ReviewJob) -> None:
        started.set()
        await release.wait()
        done.append(job.delivery_id)

    queue = InlineQueue(runner)
    name = await queue.enqueue(_job())

    assert name == "review:d-1"
    await started.wait()
    assert queue.pending == 1
    release.set()
    await queue.drain()
    assert done == ["d-1"]
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_inline_queue_contains_failures() -> None:
    async def runner(job: ReviewJob) -> None:
        raise RuntimeError("boom")

    queue = InlineQueue(runner)
    await queue.enqueue(_job())
    await queue.drain()

    assert queue.pending == 0


def _message(retry_count: int = 0) -> JobMessage:
    payload = _job().to_dict()
    payload["retry_count"] = str(retry_count)
    return JobMessage(msg_id="5-0", stream=STREAM_REVIEWS, payload=payload)


@pytest.mark.asyncio
async def test_worker_acks_after_pipeline_returns() -> None:
    redis = FakeRedis()
    pipeline = FakePipeline()
    worker = ReviewWorker(pipeline, redis=redis, concurrency=1)

    await worker.handle(_message())

    assert [job.delivery_id for job in pipeline.jobs] == ["d-1"]
    assert redis.acked == ["5-0"]
    assert STREAM_DLQ not in redis.streams


@pytest.mark.asyncio
async def test_worker_requeues_crashed_job_with_retry_count() -> None:
    redis = FakeRedis()
    worker = ReviewWorker(FakePipeline(RuntimeError("db down")), redis=redis, concurrency=1)

    await worker.handle(_message(retry_count=0))

    assert redis.acked == ["5-0"]
    (_, fields), = redis.streams[STREAM_REVIEWS]
    assert fields["retry_count"] == "1"


@pytest.mark.asyncio
async def test_worker_dead_letters_after_max_attempts() -> None:
    redis = FakeRedis()
    worker = ReviewWorker(FakePipeline(RuntimeError("db down")), redis=redis, concurrency=1)

    await worker.handle(_message(retry_count=MAX_JOB_ATTEMPTS - 1))

    (_, fields), = redis.streams[STREAM_DLQ]
    assert fields["error"] == "db down"
    assert STREAM_REVIEWS not in redis.streams
    assert redis.acked == ["5-0"]


@pytest.mark.asyncio
async def test_worker_dead_letters_malformed_jobs() -> None:
    redis = FakeRedis()
    pipeline = FakePipeline()
    worker = ReviewWorker(pipeline, redis=redis, concurrency=1)

    await worker.handle(JobMessage(msg_id="6-0", stream=STREAM_REVIEWS, payload={"x": "1"}))

    assert pipeline.jobs == []
    assert STREAM_DLQ in redis.streams
    assert redis.acked == ["6-0"]


@pytest.mark.asyncio
async def test_processed_jobs_free_stream_capacity() -> None:
    redis = FakeRedis()
    queue = RedisStreamQueue(redis, max_depth=3)
    worker = ReviewWorker(FakePipeline(), redis=redis, concurrency=1)
    for _ in range(3):
        await queue.enqueue(_job())

    for msg_id, fields in list(redis.streams[STREAM_REVIEWS]):
        await worker.handle(JobMessage(msg_id=msg_id, stream=STREAM_REVIEWS, payload=fields))

    assert redis.streams[STREAM_REVIEWS] == []
    assert redis.acked == ["1-0", "2-0", "3-0"]
    for _ in range(3):
        await queue.enqueue(_job())
    assert await redis.xlen(STREAM_REVIEWS) == 3


@pytest.mark.asyncio
async def test_requeued_job_replaces_its_entry() -> None:
    redis = FakeRedis()
    queue = RedisStreamQueue(redis, max_depth=10)
    worker = ReviewWorker(FakePipeline(RuntimeError("db down")), redis=redis, concurrency=1)
    await queue.enqueue(_job())

    (msg_id, fields), = redis.streams[STREAM_REVIEWS]
    await worker.handle(JobMessage(msg_id=msg_id, stream=STREAM_REVIEWS, payload=fields))

    (new_id, new_fields), = redis.streams[STREAM_REVIEWS]
    assert new_id != msg_id
    assert new_fields["retry_count"] == "1"
