"""Persist review outcomes exactly once per (repository, PR, delivery)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .config import settings
from .errors import PersistenceError
from .models import Review, ReviewStatus
from .quota import QuotaGate
from .schemas import AIAnalysis

logger = logging.getLogger(__name__)


class WriteResult(StrEnum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ReviewOutcome:
    """What the pipeline decided for one delivery, ready to be written."""

    repository_id: str
    owner_id: str
    pull_request_number: int
    pull_request_id: int
    delivery_id: str
    status: str
    head_sha: str | None = None
    title: str | None = None
    analysis: AIAnalysis | None = None
    analysis_source: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    # A quota unit was reserved for this delivery and must be settled.
    reserved: bool = False


@dataclass(frozen=True)
class WriteReceipt:
    result: WriteResult
    review_id: str | None = None


class ReviewWriter:
    def __init__(self, quota: QuotaGate | None = None, *, max_attempts: int | None = None) -> None:
        self.quota = quota or QuotaGate()
        self.max_attempts = max_attempts or settings.persist_max_attempts

    async def write(self, outcome: ReviewOutcome) -> WriteReceipt:
        """Insert the review and settle usage in one transaction, retrying once."""
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._write_once(outcome)
            except IntegrityError:
                # Lost a race with a concurrent writer for the same key.
                await self._release_reservation(outcome)
                return WriteReceipt(WriteResult.DUPLICATE)
            except SQLAlchemyError as exc:
                last_error = exc
                logger.warning(
                    "Review write failed for delivery %s (attempt %d/%d): %s",
                    outcome.delivery_id,
                    attempt,
                    self.max_attempts,
                    exc,
                )
        await self._release_reservation(outcome)
        raise PersistenceError(
            f"Could not persist review for delivery {outcome.delivery_id}: {last_error}"
        ) from last_error

    async def _write_once(self, outcome: ReviewOutcome) -> WriteReceipt:
        async with db.get_session() as session:
            if await self._find_existing(session, outcome) is not None:
                if outcome.reserved:
                    await self.quota.release(session, outcome.owner_id)
                logger.info("Review for delivery %s already stored", outcome.delivery_id)
                return WriteReceipt(WriteResult.DUPLICATE)

            review = Review(
                repository_id=outcome.repository_id,
                pull_request_number=outcome.pull_request_number,
                pull_request_id=outcome.pull_request_id,
                delivery_id=outcome.delivery_id,
                head_sha=outcome.head_sha,
                title=outcome.title,
                status=outcome.status,
                ai_analysis=outcome.analysis.to_json() if outcome.analysis else None,
                analysis_source=outcome.analysis_source,
                error_code=outcome.error_code,
                error_message=outcome.error_message,
            )
            session.add(review)
            await session.flush()

            if outcome.reserved:
                if outcome.status == ReviewStatus.COMPLETED:
                    await self.quota.commit_usage(session, outcome.owner_id)
                else:
                    await self.quota.release(session, outcome.owner_id)
            return WriteReceipt(WriteResult.INSERTED, review.id)

    async def _find_existing(self, session: AsyncSession, outcome: ReviewOutcome) -> str | None:
        result = await session.execute(
            select(Review.id).where(
                Review.repository_id == outcome.repository_id,
                Review.pull_request_id == outcome.pull_request_id,
                Review.delivery_id == outcome.delivery_id,
            )
        )
        return result.scalar_one_or_none()

    async def _release_reservation(self, outcome: ReviewOutcome) -> None:
        """Give back a held unit in a fresh transaction after the write itself failed."""
        if not outcome.reserved:
            return
        try:
            async with db.get_session() as session:
                await self.quota.release(session, outcome.owner_id)
        except SQLAlchemyError:
            logger.exception("Reservation for owner %s left in flight", outcome.owner_id)
