import pytest
from conftest import INSTALLATION_ID, REPO_GITHUB_ID
from sqlalchemy import update

from reviewhook import db
from reviewhook.models import Installation, Repository, User
from reviewhook.resolver import Enrolled, NotEnrolled, resolve_repository


async def _resolve(installation_id: int | None = INSTALLATION_ID, repo_id: int = REPO_GITHUB_ID):
    async with db.get_session() as session:
        return await resolve_repository(session, installation_id, repo_id)


@pytest.mark.asyncio
async def test_enrolled_repository_resolves_with_owner_token(enrolled_repo: Repository) -> None:
    resolution = await _resolve()

    assert isinstance(resolution, Enrolled)
    assert resolution.repository.id == enrolled_repo.id
    assert resolution.owner.github_login == "octo"
    assert resolution.credential == "owner-token"


@pytest.mark.asyncio
async def test_unknown_repository(enrolled_repo: Repository) -> None:
    resolution = await _resolve(repo_id=1)

    assert resolution == NotEnrolled("unknown_repository")


@pytest.mark.asyncio
async def test_inactive_repository(enrolled_repo: Repository) -> None:
    async with db.get_session() as session:
        await session.execute(
            update(Repository).where(Repository.id == enrolled_repo.id).values(is_active=False)
        )

    assert await _resolve() == NotEnrolled("inactive_repository")


@pytest.mark.asyncio
async def test_installation_mismatch(enrolled_repo: Repository) -> None:
    assert await _resolve(installation_id=INSTALLATION_ID + 1) == NotEnrolled(
        "installation_mismatch"
    )


@pytest.mark.asyncio
async def test_inactive_installation(enrolled_repo: Repository) -> None:
    async with db.get_session() as session:
        await session.execute(
            update(Installation)
            .where(Installation.installation_id == INSTALLATION_ID)
            .values(is_active=False)
        )

    assert await _resolve() == NotEnrolled("inactive_installation")


@pytest.mark.asyncio
async def test_service_token_is_used_when_owner_has_none(enrolled_repo: Repository) -> None:
    async with db.get_session() as session:
        await session.execute(
            update(User).where(User.id == enrolled_repo.owner_id).values(github_access_token=None)
        )

    resolution = await _resolve()

    assert isinstance(resolution, Enrolled)
    assert resolution.credential == "service-token"


@pytest.mark.asyncio
async def test_missing_credential(enrolled_repo: Repository, monkeypatch) -> None:
    from reviewhook.config import settings

    monkeypatch.setattr(settings, "github_token", None)
    async with db.get_session() as session:
        await session.execute(
            update(User).where(User.id == enrolled_repo.owner_id).values(github_access_token=None)
        )

    assert await _resolve() == NotEnrolled("missing_credential")
