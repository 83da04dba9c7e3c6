"""Activity-log run driver.

Replays a GitLab project's activity log into a project's stories. Events
are fetched oldest first starting a little before the last imported event
(GitLab's ``after`` filter only takes a date), and every event runs in its
own savepoint: a failing event is rolled back, recorded for retry, and the
run moves on. Only a conflicting link stops the run.

The resumption cursor (``last_event_time`` in the task log details) is
committed together with the stories it covers, and never moves past an
event that failed and may still be retried.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from story_mirror.config import get_settings
from story_mirror.db.models import Project
from story_mirror.external import ConflictingLinkError, DataNotFoundError, Document, find_link
from story_mirror.logging import LogContext, bind_repo, get_logger
from story_mirror.schemas import GitLabEvent, GitLabHookEvent

from .commit_manager import CommitManager
from .context import ImportContext
from .dispatcher import EventDispatcher
from .enums import ImportAction, TaskAction
from .results import EventRunResult, ImportResult
from .task_log import TaskLog

logger = get_logger(__name__)

GAVE_UP = "retries exhausted"


class ActivityLogImporter:
    """Imports new activity-log entries and webhook deliveries of one repo.

    Usage:
        async with get_session() as session, GitLabTransport(server) as transport:
            importer = ActivityLogImporter(ImportContext(session, transport))
            result = await importer.process_new_events(repo, project)
            print(f"Imported {result.processed} event(s), {result.failed} failed")
    """

    def __init__(
        self,
        ctx: ImportContext,
        dispatcher: EventDispatcher | None = None,
        commit_manager: CommitManager | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Initialize the run driver.

        Args:
            ctx: Import context of the run
            dispatcher: Event router (default: one built on ``ctx``)
            commit_manager: Commit batching (default: batch size from Settings)
            max_retries: Failures after which an event is given up (default: from Settings)
        """
        settings = get_settings()
        self._ctx = ctx
        self._dispatcher = dispatcher or EventDispatcher(ctx)
        self._commit_manager = commit_manager or CommitManager(
            ctx.session, ctx.write_lock, batch_size=settings.sync.commit_batch_size
        )
        self._lookback = settings.sync.event_lookback
        self._max_retries = max_retries if max_retries is not None else settings.sync.max_retries

    @property
    def dispatcher(self) -> EventDispatcher:
        """Router the events are sent through."""
        return self._dispatcher

    # -------------------------------------------------------------------------
    # Activity log
    # -------------------------------------------------------------------------
    async def process_new_events(
        self,
        repo: Document,
        project: Project,
        hook: GitLabHookEvent | None = None,
    ) -> EventRunResult:
        """Import the activity-log entries added since the last run.

        Args:
            repo: Repo whose GitLab project is polled
            project: Project the stories go into
            hook: Webhook that triggered the run (commit notes read it)

        Returns:
            EventRunResult with per-event counts and the new cursor
        """
        ctx = self._ctx
        server = ctx.server
        link = find_link(repo, server)
        if link is None:
            raise DataNotFoundError(f"Repo #{repo['id']} is not linked to {server.name}")

        last_event_time = await self.get_last_event_time(repo, project)
        query: dict[str, Any] = {"sort": "asc"}
        if last_event_time is not None:
            query["after"] = (last_event_time - self._lookback).strftime("%Y-%m-%d")

        task_log = await TaskLog.start(
            ctx.task_logs,
            TaskAction.EVENT_IMPORT,
            server_id=server.id,
            repo_id=repo["id"],
            project_id=project.id,
            options={"after": query.get("after"), "hook": hook.event_key if hook else None},
        )
        if last_event_time is not None:
            # carried over so an empty run still leaves the cursor where it was
            task_log.set("last_event_time", last_event_time.isoformat())

        result = EventRunResult(last_event_time=last_event_time)
        start_time = time.monotonic()
        now = datetime.now(UTC)
        first_event_age: float | None = None
        stalled = False

        async def handle(data: dict[str, Any], index: int, total: int | None) -> bool:
            nonlocal first_event_age, stalled
            event = GitLabEvent.model_validate(data)
            result.fetched += 1
            if last_event_time is not None and event.created_at <= last_event_time:
                return True

            outcome = await self._import_event(repo, project, event, hook, is_hook=False)
            if outcome is None:
                raise TypeError(f"Dispatcher returned no result for {event.event_key}")
            if outcome.error is not None:
                result.failed += 1
                result.failed_events.append(event.event_key)
                if outcome.reason != GAVE_UP:
                    # the next run starts over at this event
                    stalled = True
            else:
                if outcome.action == ImportAction.SKIPPED:
                    result.skipped += 1
                else:
                    result.processed += 1
                task_log.append("added", event.action_name)
                if not stalled:
                    result.last_event_time = event.created_at
                    task_log.set("last_event_time", event.created_at.isoformat())
                await self._commit_manager.record_success()

            if total:
                await task_log.report(index + 1, total)
            else:
                # until the last page arrives, estimate progress from event age
                event_age = (now - event.created_at).total_seconds()
                if first_event_age is None:
                    first_event_age = event_age
                await task_log.report(first_event_age - event_age, first_event_age)
            return True

        path = f"/projects/{link['project']['id']}/events"
        with LogContext(server=server.name, repo=repo.get("name"), task=task_log.entry.id):
            try:
                await ctx.transport.fetch_each(path, query, handle)
                await task_log.finish()
            except ConflictingLinkError as e:
                logger.error("Aborting import of {}: {}", repo.get("name"), e)
                result.aborted = e
                await task_log.abort(e)
            except Exception as e:
                await task_log.abort(e)
                await self._commit_manager.finalize()
                raise
            await self._commit_manager.finalize()
            await ctx.session.commit()

        bind_repo(server.name, repo.get("name") or "").info(
            "Imported events into project {}: processed={}, skipped={}, failed={} ({:.1f}s)",
            project.name,
            result.processed,
            result.skipped,
            result.failed,
            time.monotonic() - start_time,
        )
        return result

    async def get_last_event_time(self, repo: Document, project: Project) -> datetime | None:
        """Return the resumption cursor left by the previous runs, if any."""
        ctx = self._ctx
        entry = await ctx.task_logs.last(
            TaskAction.EVENT_IMPORT.value,
            server_id=ctx.server.id,
            repo_id=repo["id"],
            project_id=project.id,
            with_detail="last_event_time",
        )
        if entry is None:
            return None
        value = datetime.fromisoformat(entry.details["last_event_time"])
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------
    async def import_hook_event(
        self,
        repo: Document,
        project: Project,
        payload: dict[str, Any],
    ) -> EventRunResult:
        """Import a project webhook delivery.

        Issue and merge-request updates are applied straight from the payload.
        Anything else, or an update of an object that has not been imported
        yet, is picked up by replaying the activity log.

        Args:
            repo: Repo the hook was installed on
            project: Project the stories go into
            payload: Webhook request body

        Returns:
            EventRunResult of the delivery (or of the replay it triggered)
        """
        hook = GitLabHookEvent.model_validate(payload)
        try:
            outcome = await self._import_event(repo, project, hook, None, is_hook=True)
        except DataNotFoundError as e:
            logger.info("Hook {} not applied directly ({}), replaying activity log", hook.event_key, e)
            outcome = None

        if outcome is None:
            return await self.process_new_events(repo, project, hook)

        result = EventRunResult(fetched=1)
        if outcome.error is not None:
            result.failed = 1
            result.failed_events.append(hook.event_key)
        else:
            if outcome.action == ImportAction.SKIPPED:
                result.skipped = 1
            else:
                result.processed = 1
            await self._commit_manager.record_success()
        await self._commit_manager.finalize()
        await self._ctx.session.commit()
        return result

    # -------------------------------------------------------------------------
    # One event
    # -------------------------------------------------------------------------
    async def replay(
        self,
        repo: Document,
        project: Project,
        payload: dict[str, Any],
        is_hook: bool,
    ) -> ImportResult | None:
        """Import a stored event or webhook payload once more (used by retries).

        Returns:
            The result, or None for a webhook that must go through the activity log
        """
        try:
            if is_hook:
                hook = GitLabHookEvent.model_validate(payload)
                return await self._dispatcher.dispatch_hook(repo, project, hook)
            event = GitLabEvent.model_validate(payload)
            return await self._dispatcher.dispatch_event(repo, project, event)
        except ValidationError as e:
            return ImportResult.from_error("story", e)

    async def _import_event(
        self,
        repo: Document,
        project: Project,
        item: GitLabEvent | GitLabHookEvent,
        hook: GitLabHookEvent | None,
        is_hook: bool,
    ) -> ImportResult | None:
        """Run one event in a savepoint; record a failure instead of raising.

        ``ConflictingLinkError`` and ``DataNotFoundError`` propagate.
        """
        ctx = self._ctx
        server = ctx.server
        savepoint = await ctx.session.begin_nested()
        try:
            if isinstance(item, GitLabHookEvent):
                outcome = await self._dispatcher.dispatch_hook(repo, project, item)
            else:
                outcome = await self._dispatcher.dispatch_event(repo, project, item, hook)
        except (ConflictingLinkError, DataNotFoundError):
            await savepoint.rollback()
            raise
        except Exception as e:
            await savepoint.rollback()
            logger.warning("Failed to import {}: {}: {}", item.event_key, type(e).__name__, e)
            failure = await ctx.failures.record_failure(
                server_id=server.id,
                repo_id=repo["id"],
                project_id=project.id,
                event_key=item.event_key,
                payload=item.model_dump(mode="json", exclude_none=True),
                error=e,
                is_hook=is_hook,
            )
            if failure.retry_count + 1 >= self._max_retries:
                await ctx.failures.mark_permanent(failure.id)
                logger.error(
                    "Giving up on {} after {} attempts", item.event_key, failure.retry_count + 1
                )
            result = ImportResult.from_error("story", e)
            if failure.retry_count + 1 >= self._max_retries:
                result.reason = GAVE_UP
            return result

        await savepoint.commit()
        failure = await ctx.failures.get_pending_for_event(repo["id"], project.id, item.event_key)
        if failure is not None and outcome is not None:
            await ctx.failures.mark_resolved(failure.id)
        return outcome
