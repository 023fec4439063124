"""Review pipeline: resolve → quota → fetch → invoke → parse → persist → notify."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from . import db
from .ai_client import AIReviewClient
from .comments import build_review_comment
from .config import settings
from .errors import (
    AIInvocationError,
    NotEnrolledError,
    PersistenceError,
    QuotaExceededError,
    UpstreamFetchError,
)
from .events import STATUS_EVENTS, EventEmitter, ReviewEvent, event_bus
from .github import GitHubClient
from .models import ReviewStatus
from .parser import ParseResult, parse_response
from .persistence import ReviewOutcome, ReviewWriter, WriteResult
from .prompts import build_messages
from .quota import QuotaGate
from .resolver import Enrolled, NotEnrolled, resolve_repository
from .router import ReviewJob

logger = logging.getLogger(__name__)


class PipelineStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED_QUOTA = "skipped_quota"
    NOT_ENROLLED = "not_enrolled"
    DUPLICATE = "duplicate"
    PERSIST_FAILED = "persist_failed"


@dataclass(frozen=True)
class PipelineOutcome:
    status: PipelineStatus
    review_id: str | None = None
    reason: str | None = None
    parse_source: str | None = None


GitHubFactory = Callable[[str], GitHubClient]
AIFactory = Callable[[], AIReviewClient]


class ReviewPipeline:
    """Takes one routed job from enrollment lookup to a stored review and reports the outcome."""

    def __init__(
        self,
        *,
        quota: QuotaGate | None = None,
        writer: ReviewWriter | None = None,
        github_factory: GitHubFactory | None = None,
        ai_factory: AIFactory | None = None,
        emitter: EventEmitter | None = None,
        post_comments: bool | None = None,
    ) -> None:
        self.quota = quota or QuotaGate()
        self.writer = writer or ReviewWriter(self.quota)
        self.github_factory = github_factory or GitHubClient
        self.ai_factory = ai_factory or AIReviewClient
        self.emitter = emitter or event_bus
        self.post_comments = settings.post_pr_comments if post_comments is None else post_comments

    async def run(self, job: ReviewJob) -> PipelineOutcome:
        try:
            resolution = await self._resolve(job)
        except NotEnrolledError as exc:
            logger.info(
                "Skipping %s#%s: %s",
                job.repository_full_name,
                job.pull_request_number,
                exc.reason,
            )
            return PipelineOutcome(PipelineStatus.NOT_ENROLLED, reason=exc.reason)

        base = dict(
            repository_id=resolution.repository.id,
            owner_id=resolution.owner.id,
            pull_request_number=job.pull_request_number,
            pull_request_id=job.pull_request_id,
            delivery_id=job.delivery_id,
            head_sha=job.head_sha,
        )

        try:
            await self._reserve(resolution.owner.id)
        except QuotaExceededError as exc:
            outcome = ReviewOutcome(
                status=ReviewStatus.SKIPPED_QUOTA, error_code=exc.reason, **base
            )
            return await self._finish(job, resolution, outcome)

        parsed: ParseResult | None = None
        title: str | None = None
        try:
            parsed, title = await self._review(job, resolution)
        except UpstreamFetchError as exc:
            outcome = ReviewOutcome(
                status=ReviewStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
                reserved=True,
                **base,
            )
        except AIInvocationError as exc:
            outcome = ReviewOutcome(
                status=ReviewStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
                reserved=True,
                **base,
            )
        except Exception as exc:
            # The reservation must still be settled through a failed review.
            logger.exception(
                "Review of %s#%s crashed", job.repository_full_name, job.pull_request_number
            )
            outcome = ReviewOutcome(
                status=ReviewStatus.FAILED,
                error_code="internal_error",
                error_message=str(exc),
                reserved=True,
                **base,
            )
        else:
            if parsed.warning is not None:
                logger.warning(
                    "Degraded parse for delivery %s (%s): %s",
                    job.delivery_id,
                    parsed.source.value,
                    parsed.warning,
                )
            outcome = ReviewOutcome(
                status=ReviewStatus.COMPLETED,
                title=title,
                analysis=parsed.analysis,
                analysis_source=parsed.source.value,
                reserved=True,
                **base,
            )

        result = await self._finish(job, resolution, outcome)
        if result.status is PipelineStatus.COMPLETED and parsed is not None:
            await self._maybe_comment(job, resolution, parsed)
        return result

    async def _resolve(self, job: ReviewJob) -> Enrolled:
        async with db.get_session() as session:
            resolution = await resolve_repository(
                session, job.installation_id, job.repository_id
            )
        if isinstance(resolution, NotEnrolled):
            raise NotEnrolledError(resolution.reason)
        return resolution

    async def _reserve(self, owner_id: str) -> None:
        decision = await self.quota.reserve(owner_id)
        if not decision.allowed:
            raise QuotaExceededError(decision.reason)

    async def _review(self, job: ReviewJob, resolution: Enrolled) -> tuple[ParseResult, str]:
        async with self.github_factory(resolution.credential) as github:
            snapshot = await github.fetch_pull_request(
                job.repository_full_name, job.pull_request_number
            )
        messages = build_messages(
            snapshot, job.repository_full_name, resolution.repository.language
        )
        async with self.ai_factory() as ai:
            completion = await ai.complete(messages)
        return parse_response(completion.text), snapshot.title

    async def _finish(
        self, job: ReviewJob, resolution: Enrolled, outcome: ReviewOutcome
    ) -> PipelineOutcome:
        try:
            receipt = await self.writer.write(outcome)
        except PersistenceError:
            # The webhook was already acknowledged; operators follow up from logs.
            logger.exception("Dropping review result for delivery %s", job.delivery_id)
            return PipelineOutcome(PipelineStatus.PERSIST_FAILED, reason="persistence_error")

        if receipt.result is WriteResult.DUPLICATE:
            return PipelineOutcome(PipelineStatus.DUPLICATE, reason="already_stored")

        self.emitter.emit_nowait(
            ReviewEvent(
                type=STATUS_EVENTS[outcome.status],
                review_id=receipt.review_id,
                repository_id=resolution.repository.id,
                repository=resolution.repository.full_name,
                pull_request_number=job.pull_request_number,
                delivery_id=job.delivery_id,
                data={
                    "status": outcome.status,
                    "error_code": outcome.error_code,
                    "overall_score": outcome.analysis.overall_score if outcome.analysis else None,
                },
            )
        )
        return PipelineOutcome(
            PipelineStatus(outcome.status),
            review_id=receipt.review_id,
            reason=outcome.error_code,
            parse_source=outcome.analysis_source,
        )

    async def _maybe_comment(
        self, job: ReviewJob, resolution: Enrolled, parsed: ParseResult
    ) -> None:
        if not self.post_comments:
            return
        body = build_review_comment(parsed.analysis)
        if body is None:
            return
        try:
            async with self.github_factory(resolution.credential) as github:
                await github.post_comment(job.repository_full_name, job.pull_request_number, body)
        except UpstreamFetchError as exc:
            logger.warning(
                "Could not comment on %s#%s: %s",
                job.repository_full_name,
                job.pull_request_number,
                exc,
            )
