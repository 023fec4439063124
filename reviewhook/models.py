"""SQLAlchemy models for the review pipeline database."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
        list[int]: JSONType,
    }


class ReviewStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED_QUOTA = "skipped_quota"


class User(Base):
    """Repository owner; the account a review allowance belongs to."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    github_login: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    plan: Mapped[str] = mapped_column(String, default="free")
    # Supplied by the external auth system; never logged.
    github_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    installations: Mapped[list[Installation]] = relationship(back_populates="owner")
    repositories: Mapped[list[Repository]] = relationship(back_populates="owner")
    usage: Mapped[UsageCounter | None] = relationship(back_populates="owner", uselist=False)


class Installation(Base):
    """A GitHub App installation. Soft-deactivated, never deleted."""

    __tablename__ = "installations"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    installation_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    account_login: Mapped[str] = mapped_column(String, nullable=False)
    account_type: Mapped[str] = mapped_column(String, default="User")
    owner_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    repository_ids: Mapped[list[int]] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    owner: Mapped[User] = relationship(back_populates="installations")
    repositories: Mapped[list[Repository]] = relationship(back_populates="installation")


class Repository(Base):
    """A Git repository known to the system."""

    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    default_branch: Mapped[str] = mapped_column(String, default="main")
    language: Mapped[str | None] = mapped_column(String, nullable=True)
    owner_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE")
    )
    installation_id: Mapped[str | None] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("installations.id"), nullable=True
    )
    # is_active implies webhook_id is set.
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    webhook_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    owner: Mapped[User] = relationship(back_populates="repositories")
    installation: Mapped[Installation | None] = relationship(back_populates="repositories")
    reviews: Mapped[list[Review]] = relationship(
        back_populates="repository", cascade="all, delete-orphan"
    )


class Review(Base):
    """One code-review run for a (repository, pull request) at a point in time."""

    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    repository_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("repositories.id", ondelete="CASCADE")
    )
    pull_request_number: Mapped[int] = mapped_column(Integer, nullable=False)
    pull_request_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delivery_id: Mapped[str] = mapped_column(String, nullable=False)
    head_sha: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default=ReviewStatus.PENDING)
    ai_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    analysis_source: Mapped[str | None] = mapped_column(String, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "repository_id", "pull_request_id", "delivery_id", name="uq_reviews_delivery"
        ),
    )

    repository: Mapped[Repository] = relationship(back_populates="reviews")


class UsageCounter(Base):
    """Per-owner monthly review counters, updated only with atomic statements."""

    __tablename__ = "usage_counters"

    owner_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    reviews_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reviews_reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_limit: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    owner: Mapped[User] = relationship(back_populates="usage")
