"""Repository for ImportFailure model CRUD operations."""

import asyncio
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import ImportFailure, ImportFailureStatus

from .base import BaseRepository


class ImportFailureRepository(BaseRepository[ImportFailure]):
    """Repository for events whose import failed.

    Manages the lifecycle of import failures:
    - Recording new failures (or bumping the retry count of a pending one)
    - Querying pending failures for retry
    - Marking failures as resolved or permanent
    """

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, ImportFailure, write_lock)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def get_pending(
        self,
        repo_id: int | None = None,
        limit: int = 100,
        server_id: int | None = None,
    ) -> list[ImportFailure]:
        """Get pending failures ready for retry, oldest first.

        Args:
            repo_id: Filter by repo (optional)
            server_id: Filter by server (optional)
            limit: Maximum number of failures to return
        """
        stmt = select(ImportFailure).where(ImportFailure.status == ImportFailureStatus.PENDING)
        if repo_id is not None:
            stmt = stmt.where(ImportFailure.repo_id == repo_id)
        if server_id is not None:
            stmt = stmt.where(ImportFailure.server_id == server_id)
        stmt = stmt.order_by(ImportFailure.failed_at, ImportFailure.id).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_pending_for_event(
        self,
        repo_id: int,
        project_id: int,
        event_key: str,
    ) -> ImportFailure | None:
        """Get the pending failure recorded for one event, if any."""
        stmt = select(ImportFailure).where(
            ImportFailure.repo_id == repo_id,
            ImportFailure.project_id == project_id,
            ImportFailure.event_key == event_key,
            ImportFailure.status == ImportFailureStatus.PENDING,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_stats(self, repo_id: int | None = None) -> dict[str, int]:
        """Count failures by status.

        Returns:
            Dictionary with pending/resolved/permanent counts and a total
        """
        stmt = select(ImportFailure.status, func.count(ImportFailure.id))
        if repo_id is not None:
            stmt = stmt.where(ImportFailure.repo_id == repo_id)
        result = await self._session.execute(stmt.group_by(ImportFailure.status))

        stats = {status.value: 0 for status in ImportFailureStatus}
        stats["total"] = 0
        for status, count in result.all():
            stats[status.value] = count
            stats["total"] += count
        return stats

    # -------------------------------------------------------------------------
    # Create/Update Methods
    # -------------------------------------------------------------------------

    async def record_failure(
        self,
        *,
        server_id: int,
        repo_id: int,
        project_id: int,
        event_key: str,
        payload: dict[str, Any],
        error: Exception | str,
        is_hook: bool = False,
    ) -> ImportFailure:
        """Record a new failure, or bump the retry count of the pending one.

        Args:
            server_id: Server the event came from
            repo_id: Repo the event belongs to
            project_id: Project being imported into
            event_key: Identity of the event ("event:<id>" or "hook:<kind>:<id>")
            payload: Raw event or webhook payload, replayed on retry
            error: Exception or error message string
            is_hook: Whether the payload is a webhook body

        Returns:
            The failure record (new or updated)
        """
        error_message = str(error)
        error_type = type(error).__name__ if isinstance(error, Exception) else "Unknown"

        existing = await self.get_pending_for_event(repo_id, project_id, event_key)
        if existing is not None:
            existing.retry_count += 1
            existing.error_message = error_message
            existing.error_type = error_type
            existing.failed_at = datetime.now(UTC)
            await self.flush()
            return existing

        failure = ImportFailure(
            server_id=server_id,
            repo_id=repo_id,
            project_id=project_id,
            event_key=event_key,
            payload=payload,
            is_hook=is_hook,
            error_message=error_message,
            error_type=error_type,
            retry_count=0,
            status=ImportFailureStatus.PENDING,
            failed_at=datetime.now(UTC),
        )
        self.add(failure)
        await self.flush()
        return failure

    async def mark_resolved(self, failure_id: int) -> ImportFailure | None:
        """Mark a failure as resolved after a successful retry."""
        failure = await self.get_by_id(failure_id)
        if failure is None:
            return None
        failure.status = ImportFailureStatus.RESOLVED
        failure.resolved_at = datetime.now(UTC)
        await self.flush()
        return failure

    async def mark_permanent(self, failure_id: int) -> ImportFailure | None:
        """Mark a failure as permanent (no more retries)."""
        failure = await self.get_by_id(failure_id)
        if failure is None:
            return None
        failure.status = ImportFailureStatus.PERMANENT
        await self.flush()
        return failure

    async def delete_resolved(self, before: datetime | None = None) -> int:
        """Delete resolved failures, optionally only those resolved before a time.

        Returns:
            Number of deleted records
        """
        stmt = delete(ImportFailure).where(ImportFailure.status == ImportFailureStatus.RESOLVED)
        if before is not None:
            stmt = stmt.where(ImportFailure.resolved_at < before)
        cursor_result = await self._session.execute(stmt)
        row_count: int = getattr(cursor_result, "rowcount", 0) or 0
        return row_count
