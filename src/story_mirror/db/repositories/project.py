"""Repository for Project model CRUD operations."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Project

from .base import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Repository for internal projects.

    Projects are not linked to servers themselves; they reference repos
    through ``repo_ids`` and members through ``user_ids``.
    """

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, Project, write_lock)

    async def get_by_repo(self, repo_id: int) -> list[Project]:
        """Get live projects that include a repo."""
        projects = await self.get_where({"deleted": False})
        return [project for project in projects if repo_id in (project.repo_ids or [])]

    async def add_members(self, project: Project, user_ids: list[int]) -> list[int]:
        """Add users to a project's member list.

        Returns:
            IDs that were not members before (empty when nothing changed)
        """
        current = list(project.user_ids or [])
        added = [user_id for user_id in user_ids if user_id not in current]
        if added:
            project.user_ids = current + added
            await self.flush()
        return added

    async def remove_members(self, project: Project, user_ids: list[int]) -> list[int]:
        """Remove users from a project's member list.

        Returns:
            IDs that were members before
        """
        current = list(project.user_ids or [])
        removed = [user_id for user_id in user_ids if user_id in current]
        if removed:
            project.user_ids = [user_id for user_id in current if user_id not in removed]
            await self.flush()
        return removed
