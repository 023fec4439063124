"""Initial schema - users, installations, repositories, reviews, usage counters.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("github_login", sa.String(), nullable=False, unique=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("plan", sa.String(), server_default="free"),
        sa.Column("github_access_token", sa.Text(), nullable=True),
        sa.Column("last_review_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Installations table
    op.create_table(
        "installations",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("installation_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("account_login", sa.String(), nullable=False),
        sa.Column("account_type", sa.String(), server_default="User"),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
        ),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("repository_ids", postgresql.JSONB(), server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_installations_owner", "installations", ["owner_id"])

    # Repositories table
    op.create_table(
        "repositories",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("github_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("default_branch", sa.String(), server_default="main"),
        sa.Column("language", sa.String(), nullable=True),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "installation_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("installations.id"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), server_default="false"),
        sa.Column("webhook_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_repositories_owner", "repositories", ["owner_id"])

    # Reviews table
    op.create_table(
        "reviews",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "repository_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
        ),
        sa.Column("pull_request_number", sa.Integer(), nullable=False),
        sa.Column("pull_request_id", sa.BigInteger(), nullable=False),
        sa.Column("delivery_id", sa.String(), nullable=False),
        sa.Column("head_sha", sa.String(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), server_default="pending"),
        sa.Column("ai_analysis", postgresql.JSONB(), nullable=True),
        sa.Column("analysis_source", sa.String(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "repository_id", "pull_request_id", "delivery_id", name="uq_reviews_delivery"
        ),
    )
    op.create_index("idx_reviews_repository", "reviews", ["repository_id"])
    op.create_index("idx_reviews_status", "reviews", ["status"])
    op.create_index("idx_reviews_created", "reviews", ["created_at"])

    # Usage counters table
    op.create_table(
        "usage_counters",
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("reviews_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reviews_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("review_limit", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("period_start", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("usage_counters")
    op.drop_table("reviews")
    op.drop_table("repositories")
    op.drop_table("installations")
    op.drop_table("users")
