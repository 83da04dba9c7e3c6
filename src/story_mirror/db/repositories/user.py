"""Repository for User documents."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import User
from story_mirror.external import Document

from .external import ExternalDataRepository


class UserRepository(ExternalDataRepository[User]):
    """Repository for internal users."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, User, write_lock)

    async def find_by_username(self, username: str) -> Document | None:
        """Find a live user by internal username."""
        return await self.find_one({"username": username, "deleted": False})

    async def find_by_email(self, email: str) -> Document | None:
        """Find a live user whose ``details.email`` matches, ignoring case."""
        wanted = email.strip().lower()
        for document in await self.find({"deleted": False}):
            current = (document["details"] or {}).get("email")
            if current and current.strip().lower() == wanted:
                return document
        return None
