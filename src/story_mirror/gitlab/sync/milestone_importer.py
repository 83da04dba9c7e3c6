"""Milestone importer: GitLab milestones to ``milestone`` stories."""

from __future__ import annotations

import copy

from story_mirror.db.models import Project
from story_mirror.external import (
    Document,
    extend_link,
    find_link,
    fingerprint,
    import_property,
    inherit_link,
)
from story_mirror.external.text import find_tags_in_markdown
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabEvent, GitLabMilestone, StoryType

from .context import ImportContext
from .enums import ImportAction, TaskAction
from .results import ImportResult
from .task_log import TaskLog

logger = get_logger(__name__)


class MilestoneImporter:
    """Imports milestones from activity-log entries, or refreshes all of a repo's.

    Usage:
        importer = MilestoneImporter(ctx)
        results = await importer.update_milestones(repo, project)
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx

    async def process_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
    ) -> ImportResult:
        """Import the milestone an activity-log entry refers to."""
        if not event.target_id:
            # deleted milestones have no target
            return ImportResult.skipped("story", "milestone no longer exists")
        ctx = self._ctx
        project_id = ctx.project_id(repo)
        gl_milestone = GitLabMilestone.model_validate(
            await ctx.transport.fetch(f"/projects/{project_id}/milestones/{event.target_id}")
        )
        probe = extend_link(ctx.server, repo, milestone={"id": gl_milestone.id})
        story = await ctx.stories.find_one_by_link(probe, {"project_id": project.id})
        story_after = self.copy_milestone_properties(story, repo, project, author, gl_milestone)
        saved = await ctx.stories.save_if_changed(story, story_after)
        return ImportResult.from_saved("story", story, saved)

    async def update_milestones(self, repo: Document, project: Project) -> list[ImportResult]:
        """Refresh the milestone stories of a repo.

        Stories of milestones that no longer exist are marked deleted. New
        milestones are left to the activity log, which knows who made them.

        Returns:
            One result per story written
        """
        ctx = self._ctx
        server = ctx.server
        task_log = await TaskLog.start(
            ctx.task_logs,
            TaskAction.MILESTONE_IMPORT,
            server_id=server.id,
            repo_id=repo["id"],
            project_id=project.id,
        )
        results: list[ImportResult] = []
        try:
            project_id = ctx.project_id(repo)
            stories = await ctx.stories.find(
                {"project_id": project.id, "type": StoryType.MILESTONE.value, "deleted": False},
                link=extend_link(server, repo),
            )
            gl_milestones = [
                GitLabMilestone.model_validate(data)
                for data in await ctx.transport.fetch_all(f"/projects/{project_id}/milestones")
            ]

            remaining = {gl_milestone.id for gl_milestone in gl_milestones}
            for story in stories:
                link = find_link(story, server) or {}
                if link.get("milestone", {}).get("id") not in remaining:
                    saved = await ctx.stories.update_one({**story, "deleted": True})
                    results.append(ImportResult("story", ImportAction.DELETED, document=saved))
                    task_log.append("deleted", story["details"].get("title"))

            for index, gl_milestone in enumerate(gl_milestones):
                story = next(
                    (
                        story
                        for story in stories
                        if find_link(story, server, {"milestone": {"id": gl_milestone.id}})
                    ),
                    None,
                )
                if story is not None:
                    story_after = self.copy_milestone_properties(
                        story, repo, project, None, gl_milestone
                    )
                    saved = await ctx.stories.save_if_changed(story, story_after)
                    if saved is not None:
                        results.append(ImportResult.from_saved("story", story, saved))
                        task_log.append("modified", gl_milestone.title)
                await task_log.report(index + 1, len(gl_milestones))
            await task_log.finish()
        except Exception as e:
            await task_log.abort(e)
            raise
        logger.info("Updated {} milestone stories of {}", len(results), repo.get("name"))
        return results

    def copy_milestone_properties(
        self,
        story: Document | None,
        repo: Document,
        project: Project,
        author: Document | None,
        gl_milestone: GitLabMilestone,
    ) -> Document:
        """Build the story of a milestone."""
        ctx = self._ctx
        server = ctx.server
        story_after = copy.deepcopy(story) if story else {"project_id": project.id, "details": {}}
        link = inherit_link(story_after, server, repo, milestone={"id": gl_milestone.id})
        story_after["external_key"] = fingerprint(link, "project", "milestone")
        fields: list[tuple[str, object]] = [
            ("type", StoryType.MILESTONE.value),
            ("tags", find_tags_in_markdown(gl_milestone.description)),
            ("language_codes", [ctx.language_code]),
        ]
        if author is not None:
            fields += [("user_ids", [author["id"]]), ("role_ids", author.get("role_ids") or [])]
        fields += [
            ("details.title", gl_milestone.title),
            ("public", True),
            ("published", True),
            ("ptime", gl_milestone.created_at),
        ]
        for path, value in fields:
            import_property(story_after, server, path, value=value, overwrite="always")
        return story_after
