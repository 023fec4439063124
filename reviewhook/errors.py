"""Error types and helpers for the review pipeline."""

from __future__ import annotations

import re

import click


class ReviewhookError(Exception):
    """Base class for pipeline failures that carry a typed outcome."""


class AuthenticationError(ReviewhookError):
    """Webhook signature missing or invalid. Rejected, never retried or persisted."""


class DuplicateDeliveryError(ReviewhookError):
    """The delivery id was already claimed within the retention window."""


class NotEnrolledError(ReviewhookError):
    """The repository is unknown or review automation is disabled for it."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class QuotaExceededError(ReviewhookError):
    """The owner has no review allowance left for the current period."""

    def __init__(self, reason: str = "quota_exceeded") -> None:
        super().__init__(reason)
        self.reason = reason


class UpstreamFetchError(ReviewhookError):
    """GitHub could not be reached or refused the request after retries."""

    def __init__(self, message: str, *, code: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class AIInvocationError(ReviewhookError):
    """The AI reviewer failed; `transient` tells whether retries were exhausted."""

    def __init__(self, message: str, *, transient: bool, status_code: int | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code

    @property
    def code(self) -> str:
        return "ai_unavailable" if self.transient else "ai_rejected"


class PersistenceError(ReviewhookError):
    """The review could not be written after the allowed attempts."""


class QueueFullError(ReviewhookError):
    """Raised when the review job stream reaches capacity."""


class ParseDegradedWarning(UserWarning):
    """The AI response needed a fallback parse path; recorded as lower confidence."""


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database schema/migrations have not been applied."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        match = _PG_MISSING_RELATION_RE.search(str(e)) or _SQLITE_MISSING_TABLE_RE.search(str(e))
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""
    return "\n".join(
        [
            f"Database schema is not initialized{table_hint}.",
            "Run: `alembic upgrade head`",
            "Or validate with: `reviewhook schema-check`",
        ]
    )
