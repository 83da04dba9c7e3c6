"""Routing of activity-log entries and webhooks to the importers."""

from __future__ import annotations

import re

from story_mirror.db.models import Project
from story_mirror.external import Document
from story_mirror.logging import bind_event, get_logger
from story_mirror.schemas import GitLabEvent, GitLabHookEvent, GitLabSystemHookEvent, GitLabUser

from ..exceptions import GitLabNotFoundError
from .context import ImportContext
from .issue_importer import IssueImporter
from .merge_request_importer import MergeRequestImporter
from .milestone_importer import MilestoneImporter
from .note_importer import NoteImporter
from .push_importer import PushImporter
from .repo_importer import RepoImporter
from .results import ImportResult
from .user_importer import UserImporter
from .wiki_importer import WikiImporter

logger = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[\s\-]+")

NOTE_TARGETS = ("note", "diff_note", "discussion_note")
MERGE_REQUEST_TARGETS = ("merge_request", "mergerequest")

_REPO_EVENTS = re.compile(r"^project_(create|destroy|rename|transfer|update)")
_MEMBERSHIP_EVENTS = re.compile(r"^user_(add|remove)_")
_USER_EVENTS = re.compile(r"^user_(create|destroy)")


def normalize(token: str | None) -> str:
    """Normalize an event token: ``MergeRequest`` and ``merge request`` give ``merge_request``."""
    if not token:
        return ""
    token = _CAMEL_BOUNDARY.sub("_", token.strip())
    return _SEPARATORS.sub("_", token).lower()


class EventDispatcher:
    """Sends each event to the importer for its kind.

    Usage:
        dispatcher = EventDispatcher(ctx)
        result = await dispatcher.dispatch_event(repo, project, event)
        if await dispatcher.dispatch_hook(repo, project, hook) is None:
            ...  # not handled: replay the activity log instead
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx
        self.users = UserImporter(ctx)
        self.repos = RepoImporter(ctx, self.users)
        self.issues = IssueImporter(ctx)
        self.merge_requests = MergeRequestImporter(ctx)
        self.milestones = MilestoneImporter(ctx)
        self.notes = NoteImporter(ctx)
        self.pushes = PushImporter(ctx)
        self.wikis = WikiImporter(ctx)

    async def dispatch_event(
        self,
        repo: Document,
        project: Project,
        event: GitLabEvent,
        hook: GitLabHookEvent | None = None,
    ) -> ImportResult:
        """Import one activity-log entry.

        The author is resolved first; an event by an unknown user, of an
        unknown kind, or whose target no longer exists is dropped.
        """
        target_type = normalize(event.target_type)
        action = normalize(event.action_name)
        kind = f"{target_type or '-'}/{action}"
        log = bind_event(self._ctx.server.name, repo.get("name") or "", kind, event.id)

        gl_author = event.author
        if gl_author is None and (event.author_id is not None or event.author_username):
            gl_author = GitLabUser(id=event.author_id, username=event.author_username or "")
        try:
            author = await self.users.import_user(gl_author)
            if author is None:
                log.debug("Dropping event by unknown user {}", event.author_username)
                return ImportResult.skipped("story", "author not found")

            if target_type == "issue":
                return await self.issues.process_event(repo, project, author, event)
            if target_type == "milestone":
                return await self.milestones.process_event(repo, project, author, event)
            if target_type in MERGE_REQUEST_TARGETS:
                return await self.merge_requests.process_event(repo, project, author, event)
            if target_type in NOTE_TARGETS:
                return await self.notes.process_event(repo, project, author, event, hook)
            if action in ("created", "imported"):
                return await self.repos.process_event(repo, project, author, event)
            if action == "deleted":
                if event.push_data is not None or event.data:
                    return await self.pushes.process_deletion(repo, project, author, event)
                return await self.repos.process_event(repo, project, author, event)
            if action in ("joined", "left"):
                return await self.users.process_event(repo, project, author, event)
            if action in ("pushed_new", "pushed_to"):
                return await self.pushes.process_event(repo, project, author, event)
        except GitLabNotFoundError as e:
            log.info("Target of event no longer exists: {}", e)
            return ImportResult.skipped("story", "target not found")

        log.info("Unknown event: target_type = {}, action_name = {}", target_type, action)
        return ImportResult.skipped("story", f"unknown event {kind}")

    async def dispatch_hook(
        self,
        repo: Document,
        project: Project,
        hook: GitLabHookEvent,
    ) -> ImportResult | None:
        """Import a project webhook payload directly, if its kind allows.

        Returns:
            The result, or None when the hook is not handled here and the
            activity log should be replayed instead
        """
        kind = normalize(hook.object_kind)
        if kind == "wiki_page":
            # wiki changes never reach the activity log
            author = await self.users.import_user(hook.user)
            if author is None:
                return ImportResult.skipped("story", "author not found")
            return await self.wikis.process_hook_event(repo, project, author, hook)
        if hook.action != "update":
            return None
        if kind == "issue":
            return await self.issues.process_hook_event(repo, project, hook)
        if kind == "merge_request":
            return await self.merge_requests.process_hook_event(repo, project, hook)
        return None

    async def dispatch_system_hook(self, hook: GitLabSystemHookEvent) -> list[Document]:
        """React to a server-wide system hook.

        Project lifecycle and membership changes re-import the repos, user
        account changes re-import the users.

        Returns:
            The re-imported repos or users (empty when the event is ignored)
        """
        event_name = normalize(hook.event_name)
        if _REPO_EVENTS.match(event_name) or _MEMBERSHIP_EVENTS.match(event_name):
            return await self.repos.import_repositories()
        if _USER_EVENTS.match(event_name):
            return await self.users.import_users()
        logger.debug("Ignoring system hook {}", event_name)
        return []
