"""Repository for Repo documents."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Repo

from .external import ExternalDataRepository


class RepoRepository(ExternalDataRepository[Repo]):
    """Repository for source repos mirrored from GitLab projects."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Repo, write_lock)
