"""Shared test fixtures and configuration for pytest."""

import os
import tempfile
from collections.abc import AsyncGenerator

# Settings are read at import time, so the environment must be in place first.
_DB_DIR = tempfile.mkdtemp(prefix="reviewhook-tests-")
os.environ["REVIEWHOOK_DB_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/reviewhook.db"
os.environ["REVIEWHOOK_GITHUB_WEBHOOK_SECRET"] = "test-secret"
os.environ["REVIEWHOOK_GITHUB_TOKEN"] = "service-token"
os.environ["REVIEWHOOK_STORE_BACKEND"] = "memory"
os.environ["REVIEWHOOK_QUEUE_BACKEND"] = "inline"

import pytest  # noqa: E402

from reviewhook import db  # noqa: E402
from reviewhook.models import Repository  # noqa: E402

WEBHOOK_SECRET = "test-secret"
REPO_GITHUB_ID = 4242
INSTALLATION_ID = 77
REPO_FULL_NAME = "octo/widgets"


@pytest.fixture
async def database() -> AsyncGenerator[None]:
    """Fresh schema per test on a throwaway SQLite file."""
    await db.drop_db()
    await db.init_db()
    yield
    await db.drop_db()
    await db.engine.dispose()


@pytest.fixture
async def enrolled_repo(database: None) -> Repository:
    """An active repository owned by a free-plan user with their own token."""
    async with db.get_session() as session:
        repository = await db.enroll_repository(
            session,
            owner_login="octo",
            installation_id=INSTALLATION_ID,
            github_id=REPO_GITHUB_ID,
            full_name=REPO_FULL_NAME,
            webhook_id=9001,
            language="Python",
            plan="free",
            github_token="owner-token",
        )
    return repository


def pull_request_payload(
    *,
    action: str = "opened",
    number: int = 7,
    pr_id: int = 555,
    repo_id: int = REPO_GITHUB_ID,
    installation_id: int | None = INSTALLATION_ID,
) -> dict:
    payload = {
        "action": action,
        "number": number,
        "pull_request": {
            "id": pr_id,
            "number": number,
            "title": "Add widget cache",
            "head": {"sha": "abc123", "ref": "feature/cache"},
            "base": {"ref": "main"},
        },
        "repository": {"id": repo_id, "full_name": REPO_FULL_NAME},
    }
    if installation_id is not None:
        payload["installation"] = {"id": installation_id}
    return payload
