"""Async database connection and queries for the review pipeline."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload

from .config import settings
from .errors import (
    SchemaNotInitializedError,
    is_schema_missing_error,
    schema_not_initialized_message,
)
from .models import Base, Installation, Repository, Review, UsageCounter, User

# Create async engine and session factory
engine = create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
            raise


# =============================================================================
# Repository / Installation
# =============================================================================


async def get_repository_by_github_id(session: AsyncSession, github_id: int) -> Repository | None:
    """Get a repository with its owner and installation loaded."""
    result = await session.execute(
        select(Repository)
        .where(Repository.github_id == github_id)
        .options(selectinload(Repository.owner), selectinload(Repository.installation))
    )
    return result.scalar_one_or_none()


async def get_installation(session: AsyncSession, installation_id: int) -> Installation | None:
    result = await session.execute(
        select(Installation).where(Installation.installation_id == installation_id)
    )
    return result.scalar_one_or_none()


async def get_user_by_login(session: AsyncSession, login: str) -> User | None:
    result = await session.execute(select(User).where(User.github_login == login))
    return result.scalar_one_or_none()


async def enroll_repository(
    session: AsyncSession,
    *,
    owner_login: str,
    installation_id: int,
    github_id: int,
    full_name: str,
    webhook_id: int,
    language: str | None = None,
    plan: str = "free",
    github_token: str | None = None,
) -> Repository:
    """Register (or re-activate) an owner, installation and repository."""
    user = await get_user_by_login(session, owner_login)
    if user is None:
        user = User(github_login=owner_login, plan=plan, github_access_token=github_token)
        session.add(user)
        await session.flush()
    elif github_token:
        user.github_access_token = github_token

    installation = await get_installation(session, installation_id)
    if installation is None:
        installation = Installation(
            installation_id=installation_id,
            account_login=owner_login,
            owner_id=user.id,
            repository_ids=[github_id],
        )
        session.add(installation)
        await session.flush()
    else:
        installation.is_active = True
        if github_id not in (installation.repository_ids or []):
            installation.repository_ids = [*(installation.repository_ids or []), github_id]

    repository = await get_repository_by_github_id(session, github_id)
    if repository is None:
        repository = Repository(
            github_id=github_id,
            full_name=full_name,
            language=language,
            owner_id=user.id,
            installation_id=installation.id,
        )
        session.add(repository)
    repository.is_active = True
    repository.webhook_id = webhook_id
    repository.installation_id = installation.id
    await session.flush()
    return repository


# =============================================================================
# Reviews / Usage
# =============================================================================


async def get_review(session: AsyncSession, review_id: str) -> Review | None:
    result = await session.execute(
        select(Review).where(Review.id == review_id).options(selectinload(Review.repository))
    )
    return result.scalar_one_or_none()


async def list_reviews(
    session: AsyncSession,
    *,
    repository_id: str | None = None,
    status: str | None = None,
    limit: int = 20,
) -> list[Review]:
    query = (
        select(Review)
        .options(selectinload(Review.repository))
        .order_by(Review.created_at.desc())
        .limit(limit)
    )
    if repository_id:
        query = query.where(Review.repository_id == repository_id)
    if status:
        query = query.where(Review.status == status)
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_reviews(session: AsyncSession, delivery_id: str) -> int:
    result = await session.execute(select(Review.id).where(Review.delivery_id == delivery_id))
    return len(result.all())


async def get_usage(session: AsyncSession, owner_id: str) -> UsageCounter | None:
    result = await session.execute(
        select(UsageCounter)
        .where(UsageCounter.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
