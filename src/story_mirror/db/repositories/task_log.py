"""Repository for TaskLogEntry rows."""

import asyncio
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import TaskLogEntry

from .base import BaseRepository


class TaskLogRepository(BaseRepository[TaskLogEntry]):
    """Repository for import-run task log entries."""

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, TaskLogEntry, write_lock)

    async def create(
        self,
        action: str,
        *,
        server_id: int | None = None,
        repo_id: int | None = None,
        project_id: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> TaskLogEntry:
        """Create and flush a new entry."""
        entry = TaskLogEntry(
            action=action,
            server_id=server_id,
            repo_id=repo_id,
            project_id=project_id,
            options=options or {},
            details={},
        )
        self.add(entry)
        await self.flush()
        return entry

    async def last(
        self,
        action: str,
        *,
        server_id: int | None = None,
        repo_id: int | None = None,
        project_id: int | None = None,
        with_detail: str | None = None,
    ) -> TaskLogEntry | None:
        """Get the most recent entry for an action and target.

        Args:
            action: Task action name
            server_id: Server the run targeted
            repo_id: Repo the run targeted
            project_id: Project the run targeted
            with_detail: Only consider entries whose details contain this key
        """
        stmt = (
            select(TaskLogEntry)
            .where(
                TaskLogEntry.action == action,
                TaskLogEntry.server_id == server_id,
                TaskLogEntry.repo_id == repo_id,
                TaskLogEntry.project_id == project_id,
            )
            .order_by(TaskLogEntry.id.desc())
        )
        result = await self._session.execute(stmt)
        for entry in result.scalars():
            if with_detail is None or (entry.details or {}).get(with_detail) is not None:
                return entry
        return None
