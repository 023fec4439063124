"""Map a webhook's installation + repository to enrolled records."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .config import settings
from .models import Repository, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Enrolled:
    repository: Repository
    owner: User
    credential: str

    enrolled = True


@dataclass(frozen=True)
class NotEnrolled:
    reason: str

    enrolled = False


Resolution = Enrolled | NotEnrolled


async def resolve_repository(
    session: AsyncSession,
    installation_id: int | None,
    repository_github_id: int,
) -> Resolution:
    repository = await db.get_repository_by_github_id(session, repository_github_id)
    if repository is None:
        return NotEnrolled("unknown_repository")
    if not repository.is_active:
        return NotEnrolled("inactive_repository")

    installation = repository.installation
    if installation is not None:
        if installation_id is not None and installation.installation_id != installation_id:
            logger.warning(
                "Repository %s is bound to installation %s, event came from %s",
                repository.full_name,
                installation.installation_id,
                installation_id,
            )
            return NotEnrolled("installation_mismatch")
        if not installation.is_active:
            return NotEnrolled("inactive_installation")

    owner = repository.owner
    credential = owner.github_access_token or settings.github_token
    if not credential:
        return NotEnrolled("missing_credential")

    return Enrolled(repository=repository, owner=owner, credential=credential)
