"""Quota gate: atomic check-and-reserve of an owner's monthly review allowance.

Each mutation is a single UPDATE guarded by its WHERE clause, so concurrent
callers for the same owner cannot both pass the boundary. A reservation is
turned into used allowance when the review completes and released otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .config import settings
from .models import UsageCounter, User

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: str = "allowed"

    @classmethod
    def allow(cls) -> QuotaDecision:
        return cls(allowed=True)

    @classmethod
    def exceeded(cls) -> QuotaDecision:
        return cls(allowed=False, reason="quota_exceeded")


class QuotaGate:
    async def ensure_counter(self, owner_id: str) -> None:
        """Create the owner's counter from their plan limit if it does not exist yet."""
        async with db.get_session() as session:
            existing = await session.execute(
                select(UsageCounter.owner_id).where(UsageCounter.owner_id == owner_id)
            )
            if existing.first() is not None:
                return
            plan = (await session.execute(select(User.plan).where(User.id == owner_id))).scalar()

        try:
            async with db.get_session() as session:
                session.add(
                    UsageCounter(
                        owner_id=owner_id,
                        reviews_used=0,
                        reviews_reserved=0,
                        review_limit=settings.limit_for_plan(plan),
                        period_start=datetime.now(UTC),
                    )
                )
        except IntegrityError:
            logger.debug("Usage counter for %s created concurrently", owner_id)

    async def reserve(self, owner_id: str, units: int = 1) -> QuotaDecision:
        """Reserve ``units`` of allowance, or report the quota as exceeded without mutating."""
        await self.ensure_counter(owner_id)
        async with db.get_session() as session:
            result = await session.execute(
                update(UsageCounter)
                .where(UsageCounter.owner_id == owner_id)
                .where(
                    or_(
                        UsageCounter.review_limit < 0,
                        UsageCounter.reviews_used + UsageCounter.reviews_reserved + units
                        <= UsageCounter.review_limit,
                    )
                )
                .values(reviews_reserved=UsageCounter.reviews_reserved + units)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 1:
            return QuotaDecision.allow()
        logger.info("Owner %s is over their review quota", owner_id)
        return QuotaDecision.exceeded()

    async def release(self, session: AsyncSession, owner_id: str, units: int = 1) -> None:
        """Give back a reservation that will not turn into a completed review."""
        await session.execute(
            update(UsageCounter)
            .where(UsageCounter.owner_id == owner_id)
            .where(UsageCounter.reviews_reserved >= units)
            .values(reviews_reserved=UsageCounter.reviews_reserved - units)
            .execution_options(synchronize_session=False)
        )

    async def commit_usage(self, session: AsyncSession, owner_id: str, units: int = 1) -> None:
        """Turn a reservation into used allowance and stamp the owner's last review."""
        await session.execute(
            update(UsageCounter)
            .where(UsageCounter.owner_id == owner_id)
            .where(UsageCounter.reviews_reserved >= units)
            .values(
                reviews_used=UsageCounter.reviews_used + units,
                reviews_reserved=UsageCounter.reviews_reserved - units,
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(User)
            .where(User.id == owner_id)
            .values(last_review_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
