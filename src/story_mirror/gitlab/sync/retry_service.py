"""Failure Retry Service - Replay events whose import failed.

Pending rows of the import_failures table hold the raw activity-log entry
or webhook body. Each one is replayed through the dispatcher; a success
resolves the row, a failure bumps its retry count until the configured
maximum, after which it is marked permanent.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from story_mirror.config import get_settings
from story_mirror.db.models import Project
from story_mirror.external import ConflictingLinkError, DataNotFoundError, Document
from story_mirror.logging import get_logger

from .event_importer import ActivityLogImporter
from .results import ImportResult

if TYPE_CHECKING:
    from story_mirror.db.models import ImportFailure

    from .context import ImportContext

logger = get_logger(__name__)


@dataclass
class RetryResult:
    """Result of a failure retry operation.

    Aggregates results from replaying multiple failed events.
    """

    total_pending: int = 0
    """Total pending failures found to retry."""

    succeeded: int = 0
    """Failures that were successfully resolved."""

    failed_again: int = 0
    """Failures that failed again on retry."""

    marked_permanent: int = 0
    """Failures marked as permanent (max retries exceeded)."""

    skipped_dry_run: int = 0
    """Failures skipped due to dry-run mode."""

    duration_seconds: float = 0.0
    """Total time taken for the operation."""

    results: list[tuple[str, ImportResult]] = field(default_factory=list)
    """List of (event_key, import_result) tuples."""

    @property
    def total_attempted(self) -> int:
        """Total failures that were actually attempted (not dry-run)."""
        return self.succeeded + self.failed_again + self.marked_permanent

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_pending": self.total_pending,
            "succeeded": self.succeeded,
            "failed_again": self.failed_again,
            "marked_permanent": self.marked_permanent,
            "skipped_dry_run": self.skipped_dry_run,
            "total_attempted": self.total_attempted,
            "duration_seconds": round(self.duration_seconds, 2),
            "results": [
                {
                    "event_key": event_key,
                    "success": r.success,
                    "action": r.action.value,
                    "error": str(r.error) if r.error else None,
                }
                for event_key, r in self.results
            ],
        }


class FailureRetryService:
    """Service for replaying failed event imports of one server.

    Usage:
        async with get_session() as session, GitLabTransport(server) as transport:
            service = FailureRetryService(ImportContext(session, transport))
            result = await service.retry_failures()
            print(f"Resolved: {result.succeeded}, Failed again: {result.failed_again}")
    """

    def __init__(
        self,
        ctx: ImportContext,
        importer: ActivityLogImporter | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Initialize the retry service.

        Args:
            ctx: Import context of the server the failures came from
            importer: Run driver used for replays (default: one built on ``ctx``)
            max_retries: Attempts before a failure is permanent (default: from Settings)
        """
        self._ctx = ctx
        self._importer = importer or ActivityLogImporter(ctx)
        self._max_retries = max_retries or get_settings().sync.max_retries

    async def retry_failures(
        self,
        repo_id: int | None = None,
        max_items: int | None = None,
        dry_run: bool = False,
    ) -> RetryResult:
        """Retry pending failures.

        Args:
            repo_id: Filter by repo (optional)
            max_items: Maximum number of failures to retry (optional)
            dry_run: If True, don't actually retry, just report what would happen

        Returns:
            RetryResult with aggregated statistics
        """
        ctx = self._ctx
        start_time = time.monotonic()
        result = RetryResult()

        limit = max_items or 100
        pending = await ctx.failures.get_pending(repo_id=repo_id, limit=limit, server_id=ctx.server.id)
        result.total_pending = len(pending)

        if not pending:
            logger.info("No pending failures to retry")
            result.duration_seconds = time.monotonic() - start_time
            return result

        logger.info(
            "Found {} pending failures to retry (limit={}, dry_run={})",
            len(pending),
            limit,
            dry_run,
        )

        targets: dict[tuple[int, int], tuple[Document, Project] | None] = {}

        for failure in pending:
            if dry_run:
                result.skipped_dry_run += 1
                result.results.append((failure.event_key, ImportResult.skipped("story", "dry run")))
                continue

            outcome = await self._retry_single_failure(failure, targets)
            result.results.append((failure.event_key, outcome))

            if outcome.success:
                result.succeeded += 1
                await ctx.failures.mark_resolved(failure.id)
                logger.info(
                    "Resolved failure of {} (retry {})",
                    failure.event_key,
                    failure.retry_count,
                )
            elif failure.retry_count >= self._max_retries - 1:  # -1 because we just tried
                result.marked_permanent += 1
                await ctx.failures.mark_permanent(failure.id)
                logger.warning(
                    "{} failed permanently after {} retries: {}",
                    failure.event_key,
                    failure.retry_count + 1,
                    outcome.error,
                )
            else:
                result.failed_again += 1
                await ctx.failures.record_failure(
                    server_id=failure.server_id,
                    repo_id=failure.repo_id,
                    project_id=failure.project_id,
                    event_key=failure.event_key,
                    payload=failure.payload,
                    error=outcome.error or Exception("Unknown error"),
                    is_hook=failure.is_hook,
                )
                logger.warning(
                    "{} failed again (retry {}/{}): {}",
                    failure.event_key,
                    failure.retry_count,
                    self._max_retries,
                    outcome.error,
                )
            await ctx.session.commit()

        result.duration_seconds = time.monotonic() - start_time

        logger.info(
            "Retry complete: succeeded={}, failed_again={}, permanent={} ({:.1f}s)",
            result.succeeded,
            result.failed_again,
            result.marked_permanent,
            result.duration_seconds,
        )

        return result

    async def _retry_single_failure(
        self,
        failure: ImportFailure,
        targets: dict[tuple[int, int], tuple[Document, Project] | None],
    ) -> ImportResult:
        """Replay one stored payload in a savepoint.

        Args:
            failure: The failure record to retry
            targets: Cache of (repo_id, project_id) -> (repo, project)

        Returns:
            ImportResult of the replay
        """
        ctx = self._ctx
        key = (failure.repo_id, failure.project_id)
        if key not in targets:
            repo = await ctx.repos.get_document(failure.repo_id)
            project = await ctx.projects.get_by_id(failure.project_id)
            targets[key] = (repo, project) if repo is not None and project is not None else None
        target = targets[key]
        if target is None:
            logger.error("Repo {} or project {} of failure {} not found", *key, failure.id)
            return ImportResult.from_error(
                "story", DataNotFoundError(f"Repo {key[0]} or project {key[1]} not found")
            )
        repo, project = target

        logger.debug("Retrying {} (attempt {})", failure.event_key, failure.retry_count + 2)
        savepoint = await ctx.session.begin_nested()
        try:
            outcome = await self._importer.replay(repo, project, failure.payload, failure.is_hook)
        except ConflictingLinkError:
            await savepoint.rollback()
            raise
        except Exception as e:
            await savepoint.rollback()
            return ImportResult.from_error("story", e)
        await savepoint.commit()

        if outcome is None:
            # a webhook that only the activity log can explain
            run = await self._importer.process_new_events(repo, project)
            if run.aborted is not None:
                return ImportResult.from_error("story", run.aborted)
            return ImportResult.skipped("story", "replayed activity log")
        return outcome

    async def get_failure_stats(
        self,
        repo_id: int | None = None,
    ) -> dict[str, Any]:
        """Get statistics about failures.

        Args:
            repo_id: Filter by repo (optional)

        Returns:
            Dictionary with failure statistics by status
        """
        return await self._ctx.failures.get_stats(repo_id)
