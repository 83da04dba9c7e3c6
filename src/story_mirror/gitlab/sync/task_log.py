"""Task log: progress and audit record of an import run.

A ``TaskLog`` wraps one ``TaskLogEntry`` row. Progress reports and details
are written to the row (and flushed) as the run goes, so the resumption
cursor of an activity-log replay commits together with the stories it
covers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from story_mirror.db.models import TaskLogEntry
from story_mirror.db.repositories import TaskLogRepository
from story_mirror.logging import get_logger

logger = get_logger(__name__)


class TaskLog:
    """Progress tracker persisted as a task log entry.

    Usage:
        task_log = await TaskLog.start(repository, "gitlab-event-import", repo_id=3)
        for index, event in enumerate(events):
            ...
            task_log.set("last_event_time", event.created_at.isoformat())
            await task_log.report(index + 1, len(events))
        await task_log.finish()
    """

    def __init__(self, repository: TaskLogRepository, entry: TaskLogEntry) -> None:
        self._repository = repository
        self._entry = entry

    @classmethod
    async def start(
        cls,
        repository: TaskLogRepository,
        action: str,
        *,
        server_id: int | None = None,
        repo_id: int | None = None,
        project_id: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> TaskLog:
        """Create the entry for a new run."""
        action = getattr(action, "value", action)
        entry = await repository.create(
            action,
            server_id=server_id,
            repo_id=repo_id,
            project_id=project_id,
            options=options,
        )
        logger.bind(name=__name__, task=entry.id).debug("Started task {}", action)
        return cls(repository, entry)

    @property
    def entry(self) -> TaskLogEntry:
        """The underlying row."""
        return self._entry

    @property
    def details(self) -> dict[str, Any]:
        """Details recorded so far."""
        return dict(self._entry.details or {})

    @property
    def completion(self) -> int:
        """Completion percentage (0-100)."""
        return self._entry.completion

    def set(self, key: str, value: Any) -> None:
        """Set one detail value."""
        self._entry.details = {**(self._entry.details or {}), key: value}

    def append(self, key: str, value: Any) -> None:
        """Append a value to a detail list (e.g. ``added`` usernames)."""
        details = dict(self._entry.details or {})
        details[key] = [*details.get(key, []), value]
        self._entry.details = details

    async def report(
        self,
        numerator: float,
        denominator: float | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record progress as ``numerator / denominator``.

        An unknown or zero denominator leaves the completion unchanged.
        """
        if details:
            self._entry.details = {**(self._entry.details or {}), **details}
        if denominator:
            percent = int(round(100 * numerator / denominator))
            self._entry.completion = max(0, min(100, percent))
        await self._repository.flush()

    async def finish(self) -> None:
        """Mark the run complete."""
        self._entry.completion = 100
        self._entry.finished_at = datetime.now(UTC)
        await self._repository.flush()

    async def abort(self, error: BaseException) -> None:
        """Mark the run failed with ``error``."""
        self._entry.failed = True
        self._entry.error = f"{type(error).__name__}: {error}"
        self._entry.finished_at = datetime.now(UTC)
        await self._repository.flush()
