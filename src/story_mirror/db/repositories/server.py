"""Repository for Server model lookups."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Server

from .base import BaseRepository


class ServerRepository(BaseRepository[Server]):
    """Repository for configured external servers."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Server, write_lock)

    async def get_by_name(self, name: str) -> Server | None:
        """Get a server by its unique name."""
        return await self._get_by_field("name", name)

    async def get_active(self, type: str | None = None) -> list[Server]:
        """Get servers that are neither disabled nor deleted.

        Args:
            type: Restrict to one server type (e.g. "gitlab")
        """
        criteria: dict[str, object] = {"disabled": False, "deleted": False}
        if type is not None:
            criteria["type"] = type
        return await self.get_where(criteria)
