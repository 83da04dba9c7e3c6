"""Repository for Commit documents."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Commit
from story_mirror.external import Document

from .external import ExternalDataRepository


class CommitRepository(ExternalDataRepository[Commit]):
    """Repository for commits fetched during push reconstruction."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Commit, write_lock)

    async def find_by_title_hash(self, title_hash: str) -> list[Document]:
        """Get commits whose title hashes to ``title_hash``."""
        return await self.find({"title_hash": title_hash, "deleted": False})
