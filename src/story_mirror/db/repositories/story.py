"""Repositories for Story and Reaction documents."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Reaction, Story
from story_mirror.external import Document

from .external import ExternalDataRepository


class StoryRepository(ExternalDataRepository[Story]):
    """Repository for the stories of a project's feed."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Story, write_lock)


class ReactionRepository(ExternalDataRepository[Reaction]):
    """Repository for reactions attached to stories."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Reaction, write_lock)

    async def find_by_story(
        self,
        story_id: int,
        type: str | list[str] | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[Document]:
        """Get the reactions of a story, optionally of given types."""
        criteria: dict[str, object] = {"story_id": story_id}
        if type is not None:
            criteria["type"] = type
        if not include_deleted:
            criteria["deleted"] = False
        return await self.find(criteria)
