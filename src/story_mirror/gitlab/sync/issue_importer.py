"""Issue importer: GitLab issues to ``issue`` stories.

Issues arrive two ways: activity-log entries (which carry the issue's
server-wide id only, so its number has to be looked up) and ``issue``
webhooks (which carry the whole object). Both end in the same field copy.

From GitLab's documentation: ``id`` is unique across the server, ``iid``
only within a project. Stories are linked by both.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import ClassVar

from story_mirror.db.models import Project
from story_mirror.external import (
    DataNotFoundError,
    Document,
    ObjectMovedError,
    extend_link,
    fingerprint,
    import_property,
    inherit_link,
)
from story_mirror.external.text import find_tags_in_markdown, label_tags, union
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabEvent, GitLabHookEvent, GitLabIssue, GitLabMilestone, StoryType

from .assignment_importer import AssignmentImporter
from .context import ImportContext
from .enums import ImportAction
from .results import ImportResult

logger = get_logger(__name__)


class IssueImporter:
    """Imports issues from activity-log entries and webhooks.

    Usage:
        importer = IssueImporter(ctx)
        result = await importer.process_event(repo, project, author, event)
    """

    link_key: ClassVar[str] = "issue"
    collection: ClassVar[str] = "issues"
    schema: ClassVar[type[GitLabIssue]] = GitLabIssue

    def __init__(self, ctx: ImportContext, assignments: AssignmentImporter | None = None) -> None:
        self._ctx = ctx
        self._assignments = assignments or AssignmentImporter(ctx)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------
    async def process_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
    ) -> ImportResult:
        """Import the issue an activity-log entry refers to.

        The author becomes the story's author only for ``opened`` entries.
        """
        if not event.target_id:
            return ImportResult.skipped("story", "event has no target")
        gl_object = await self.fetch_object(repo, event.target_id, event.target_iid)
        story = await self.find_story(repo, project, gl_object)
        opener = author if event.action_name.strip().lower() == "opened" else None
        return await self.import_object(repo, project, story, gl_object, opener)

    async def process_hook_event(
        self,
        repo: Document,
        project: Project,
        hook: GitLabHookEvent,
    ) -> ImportResult:
        """Apply an ``update`` webhook to the story of an already imported object.

        Other actions are ignored; they show up in the activity log.

        Raises:
            DataNotFoundError: If the object has not been imported yet
        """
        if hook.action != "update":
            return ImportResult.skipped("story", f"hook action {hook.action!r} not handled")
        project_id = self._ctx.project_id(repo)
        gl_object = self.object_from_hook(hook, project_id)
        story = await self.find_story(repo, project, gl_object)
        if story is None:
            raise DataNotFoundError(
                f"No story for {self.link_key} {gl_object.id} in project {project.id}"
            )
        # hooks carry only the milestone id; payloads without one leave it alone
        keep_milestone = "milestone_id" not in hook.object_attributes
        milestone_id = hook.object_attributes.get("milestone_id")
        if milestone_id is not None:
            data = await self._ctx.transport.fetch(f"/projects/{project_id}/milestones/{milestone_id}")
            gl_object.milestone = GitLabMilestone.model_validate(data)
        # the user behind a hook is not the object's author
        return await self.import_object(
            repo, project, story, gl_object, None, keep_milestone=keep_milestone
        )

    def object_from_hook(self, hook: GitLabHookEvent, project_id: int) -> GitLabIssue:
        return hook.to_issue(project_id)

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------
    async def fetch_object(self, repo: Document, object_id: int, number: int | None) -> GitLabIssue:
        """Fetch an event's target, resolving its number first when unknown."""
        ctx = self._ctx
        project_id = self._ctx.project_id(repo)
        if number is not None:
            ctx.issue_numbers.remember(ctx.server.id, project_id, object_id, number, self.collection)
        else:
            number = await ctx.issue_numbers.resolve(
                ctx.transport, project_id, object_id, self.collection
            )
        data = await ctx.transport.fetch(f"/projects/{project_id}/{self.collection}/{number}")
        gl_object = self.schema.model_validate(data)
        if gl_object.project_id is None:
            gl_object.project_id = project_id
        return gl_object

    async def find_story(
        self, repo: Document, project: Project, gl_object: GitLabIssue
    ) -> Document | None:
        probe = extend_link(self._ctx.server, repo, **{self.link_key: {"id": gl_object.id}})
        return await self._ctx.stories.find_one_by_link(probe, {"project_id": project.id})

    async def import_object(
        self,
        repo: Document,
        project: Project,
        story: Document | None,
        gl_object: GitLabIssue,
        opener: Document | None,
        *,
        keep_milestone: bool = False,
    ) -> ImportResult:
        """Copy the object into its story, then import its assignments.

        An object that was moved to another project has its story marked
        deleted instead.
        """
        ctx = self._ctx
        try:
            assignments = await self._assignments.find_assignments(gl_object, self.collection)
        except ObjectMovedError:
            if story is None:
                return ImportResult.skipped("story", f"{self.link_key} {gl_object.id} was moved")
            logger.info("{} {} was moved, deleting story #{}", self.link_key, gl_object.id, story["id"])
            saved = await ctx.stories.save_if_changed(story, {**story, "deleted": True})
            return ImportResult("story", ImportAction.DELETED, document=saved or story)

        story_after = self.copy_properties(
            story, repo, project, opener, gl_object, keep_milestone=keep_milestone
        )
        saved = await ctx.stories.save_if_changed(story, story_after)
        result = ImportResult.from_saved("story", story, saved)
        # unchanged stories equal story_after, which carries their id
        stored = saved or story_after
        result.children = await self._assignments.import_assignments(stored, assignments)
        return result

    def copy_properties(
        self,
        story: Document | None,
        repo: Document,
        project: Project,
        opener: Document | None,
        gl_object: GitLabIssue,
        *,
        keep_milestone: bool = False,
    ) -> Document:
        """Build the story of an issue.

        Once a story has been exported to GitLab, only its type, tags,
        number, title and labels keep following the issue.
        """
        ctx = self._ctx
        server = ctx.server
        tags = union(find_tags_in_markdown(gl_object.description), label_tags(gl_object.labels))

        state = gl_object.state
        if state == "opened" and story is not None:
            # newer GitLab releases report reopened issues as opened
            if story["details"].get("state") in ("closed", "reopened"):
                state = "reopened"

        story_after = self._start(story, repo, project, gl_object)
        exported = bool(story_after.get("etime"))
        import_property(story_after, server, "type", value=StoryType.ISSUE.value, overwrite="always")
        import_property(story_after, server, "tags", value=tags, overwrite="always")
        import_property(
            story_after, server, "language_codes",
            value=[ctx.language_code], overwrite="always", ignore=exported,
        )
        if opener is not None:
            import_property(
                story_after, server, "user_ids",
                value=[opener["id"]], overwrite="always", ignore=exported,
            )
            import_property(
                story_after, server, "role_ids",
                value=opener.get("role_ids") or [], overwrite="always", ignore=exported,
            )
        import_property(story_after, server, "details.number", value=gl_object.iid, overwrite="always")
        import_property(
            story_after, server, "details.title",
            value=gl_object.title, overwrite="match-previous:title",
        )
        import_property(
            story_after, server, "details.labels",
            value=list(gl_object.labels), overwrite="match-previous:labels",
        )
        milestone = gl_object.milestone.title if gl_object.milestone else None
        for path, value, ignore in (
            ("details.state", state, exported),
            ("details.milestone", milestone, exported or keep_milestone),
            ("published", True, exported),
            ("public", not gl_object.confidential, exported),
            ("ptime", gl_object.created_at, exported),
        ):
            import_property(story_after, server, path, value=value, overwrite="always", ignore=ignore)
        self._bump(story, story_after)
        return story_after

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _start(
        self, story: Document | None, repo: Document, project: Project, gl_object: GitLabIssue
    ) -> Document:
        story_after = copy.deepcopy(story) if story else {"project_id": project.id, "details": {}}
        link = inherit_link(
            story_after,
            self._ctx.server,
            repo,
            **{self.link_key: {"id": gl_object.id, "number": gl_object.iid}},
        )
        story_after["external_key"] = fingerprint(link, "project", self.link_key)
        return story_after

    @staticmethod
    def _bump(story: Document | None, story_after: Document) -> None:
        # a state change moves the story back up the feed
        if story is None or story_after == story:
            return
        if story["details"].get("state") != story_after["details"].get("state"):
            story_after["btime"] = datetime.now(UTC)

