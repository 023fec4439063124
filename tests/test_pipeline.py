import json

import httpx
import pytest
from conftest import pull_request_payload
from sqlalchemy import update

from reviewhook import db
from reviewhook.ai_client import AIReviewClient
from reviewhook.events import EventEmitter, EventType, ReviewEvent
from reviewhook.github import GitHubClient
from reviewhook.models import Repository, UsageCounter
from reviewhook.pipeline import PipelineStatus, ReviewPipeline
from reviewhook.quota import QuotaGate
from reviewhook.router import ReviewJob, route_event

FENCED = '```json\n{"overallScore":8.2,"summary":"Looks solid","issues":[],"suggestions":[]}\n```'
PLAIN = "Score: 6\nSummary: needs work\n- missing null check\n- add tests"

PULL = {
    "number": 7,
    "title": "Add widget cache",
    "body": "Caches widgets per tenant.",
    "user": {"login": "octocat"},
    "head": {"sha": "abc123", "ref": "feature/cache"},
    "base": {"ref": "main"},
    "changed_files": 1,
}
FILES = [{"filename": "app/cache.py", "status": "added", "additions": 3, "patch": "+x = 1"}]


async def _no_sleep(delay: float) -> None:
    return None


class FakeUpstreams:
    """Routes the pipeline's GitHub and AI traffic to in-memory handlers."""

    def __init__(self, ai_text: str = FENCED, github_status: int = 200, ai_status: int = 200):
        self.ai_text = ai_text
        self.github_status = github_status
        self.ai_status = ai_status
        self.ai_calls = 0
        self.comments: list[str] = []
        self.tokens: set[str] = set()

    def _github(self, request: httpx.Request) -> httpx.Response:
        self.tokens.add(request.headers["Authorization"])
        if request.method == "POST":
            self.comments.append(json.loads(request.content)["body"])
            return httpx.Response(201, json={"id": 1})
        if self.github_status != 200:
            return httpx.Response(self.github_status)
        if request.url.path.endswith("/files"):
            return httpx.Response(200, json=FILES)
        return httpx.Response(200, json=PULL)

    def _ai(self, request: httpx.Request) -> httpx.Response:
        self.ai_calls += 1
        if self.ai_status != 200:
            return httpx.Response(self.ai_status)
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": self.ai_text}}]}
        )

    def github_factory(self, token: str) -> GitHubClient:
        return GitHubClient(
            token,
            base_url="https://github.test",
            transport=httpx.MockTransport(self._github),
            sleep=_no_sleep,
        )

    def ai_factory(self) -> AIReviewClient:
        return AIReviewClient(
            base_url="https://ai.test/v1",
            transport=httpx.MockTransport(self._ai),
            sleep=_no_sleep,
        )


def _pipeline(upstreams: FakeUpstreams, events: list[ReviewEvent], **kwargs) -> ReviewPipeline:
    emitter = EventEmitter()
    emitter.on_event(events.append)
    return ReviewPipeline(
        github_factory=upstreams.github_factory,
        ai_factory=upstreams.ai_factory,
        emitter=emitter,
        post_comments=kwargs.pop("post_comments", False),
        **kwargs,
    )


def _job(delivery_id: str = "delivery-1", **overrides) -> ReviewJob:
    job = route_event("pull_request", pull_request_payload(**overrides), delivery_id).job
    assert job is not None
    return job


async def _set_used(owner_id: str, used: int) -> None:
    await QuotaGate().ensure_counter(owner_id)
    async with db.get_session() as session:
        await session.execute(
            update(UsageCounter).where(UsageCounter.owner_id == owner_id).values(reviews_used=used)
        )


async def _counters(owner_id: str) -> tuple[int, int]:
    async with db.get_session() as session:
        counter = await db.get_usage(session, owner_id)
    assert counter is not None
    return counter.reviews_used, counter.reviews_reserved


@pytest.mark.asyncio
async def test_opened_pull_request_is_reviewed(enrolled_repo: Repository) -> None:
    upstreams = FakeUpstreams(ai_text=FENCED)
    events: list[ReviewEvent] = []
    pipeline = _pipeline(upstreams, events)

    outcome = await pipeline.run(_job())
    await pipeline.emitter.drain()

    assert outcome.status is PipelineStatus.COMPLETED
    assert outcome.parse_source == "fence"
    assert upstreams.ai_calls == 1
    assert upstreams.tokens == {"Bearer owner-token"}
    assert await _counters(enrolled_repo.owner_id) == (1, 0)

    async with db.get_session() as session:
        review = await db.get_review(session, outcome.review_id)
    assert review is not None
    assert review.status == "completed"
    assert review.title == "Add widget cache"
    assert review.ai_analysis["overallScore"] == 8.2
    assert review.ai_analysis["summary"] == "Looks solid"

    assert [e.type for e in events] == [EventType.REVIEW_COMPLETED]
    assert events[0].review_id == outcome.review_id


@pytest.mark.asyncio
async def test_exhausted_quota_skips_without_calling_ai(enrolled_repo: Repository) -> None:
    await _set_used(enrolled_repo.owner_id, 50)
    upstreams = FakeUpstreams()
    events: list[ReviewEvent] = []
    pipeline = _pipeline(upstreams, events)

    outcome = await pipeline.run(_job())
    await pipeline.emitter.drain()

    assert outcome.status is PipelineStatus.SKIPPED_QUOTA
    assert outcome.reason == "quota_exceeded"
    assert upstreams.ai_calls == 0
    assert await _counters(enrolled_repo.owner_id) == (50, 0)

    async with db.get_session() as session:
        review = await db.get_review(session, outcome.review_id)
    assert review is not None
    assert review.status == "skipped_quota"
    assert [e.type for e in events] == [EventType.REVIEW_SKIPPED_QUOTA]


@pytest.mark.asyncio
async def test_malformed_ai_output_is_recovered_heuristically(enrolled_repo: Repository) -> None:
    pipeline = _pipeline(FakeUpstreams(ai_text=PLAIN), [])

    outcome = await pipeline.run(_job())

    assert outcome.status is PipelineStatus.COMPLETED
    assert outcome.parse_source == "heuristic"
    async with db.get_session() as session:
        review = await db.get_review(session, outcome.review_id)
    analysis = review.ai_analysis
    assert analysis["overallScore"] == 6
    assert "needs work" in analysis["summary"]
    assert [i["severity"] for i in analysis["issues"]] == ["medium", "medium"]
    assert analysis["rawResponse"] == PLAIN


@pytest.mark.asyncio
async def test_unenrolled_repository_is_a_no_op(enrolled_repo: Repository) -> None:
    upstreams = FakeUpstreams()
    pipeline = _pipeline(upstreams, [])

    outcome = await pipeline.run(_job(repo_id=999))

    assert outcome.status is PipelineStatus.NOT_ENROLLED
    assert outcome.reason == "unknown_repository"
    assert upstreams.ai_calls == 0
    async with db.get_session() as session:
        assert await db.count_reviews(session, "delivery-1") == 0


@pytest.mark.asyncio
async def test_github_failure_fails_review_and_releases_quota(enrolled_repo: Repository) -> None:
    upstreams = FakeUpstreams(github_status=401)
    events: list[ReviewEvent] = []
    pipeline = _pipeline(upstreams, events)

    outcome = await pipeline.run(_job())
    await pipeline.emitter.drain()

    assert outcome.status is PipelineStatus.FAILED
    assert outcome.reason == "github_unauthorized"
    assert upstreams.ai_calls == 0
    assert await _counters(enrolled_repo.owner_id) == (0, 0)
    assert [e.type for e in events] == [EventType.REVIEW_FAILED]


@pytest.mark.asyncio
async def test_ai_rejection_fails_review(enrolled_repo: Repository) -> None:
    upstreams = FakeUpstreams(ai_status=400)
    pipeline = _pipeline(upstreams, [])

    outcome = await pipeline.run(_job())

    assert outcome.status is PipelineStatus.FAILED
    assert outcome.reason == "ai_rejected"
    assert upstreams.ai_calls == 1
    assert await _counters(enrolled_repo.owner_id) == (0, 0)


@pytest.mark.asyncio
async def test_rerun_of_same_delivery_is_a_duplicate(enrolled_repo: Repository) -> None:
    upstreams = FakeUpstreams()
    pipeline = _pipeline(upstreams, [])

    first = await pipeline.run(_job())
    second = await pipeline.run(_job())

    assert first.status is PipelineStatus.COMPLETED
    assert second.status is PipelineStatus.DUPLICATE
    assert await _counters(enrolled_repo.owner_id) == (1, 0)
    async with db.get_session() as session:
        assert await db.count_reviews(session, "delivery-1") == 1


@pytest.mark.asyncio
async def test_serious_issues_are_commented_on_the_pull_request(
    enrolled_repo: Repository,
) -> None:
    ai_text = json.dumps(
        {
            "overallScore": 4,
            "summary": "Security problem",
            "issues": [
                {"severity": "low", "message": "nit"},
                {"severity": "critical", "file": "app/cache.py", "line": 1,
                 "message": "Secret in code"},
            ],
        }
    )
    upstreams = FakeUpstreams(ai_text=ai_text)
    pipeline = _pipeline(upstreams, [], post_comments=True)

    outcome = await pipeline.run(_job())

    assert outcome.status is PipelineStatus.COMPLETED
    assert len(upstreams.comments) == 1
    assert "Secret in code" in upstreams.comments[0]
    assert "nit" not in upstreams.comments[0]
