"""Merge-request importer: GitLab merge requests to ``merge-request`` stories."""

from __future__ import annotations

from typing import ClassVar

from story_mirror.db.models import Project
from story_mirror.external import Document, import_property
from story_mirror.external.text import find_tags_in_markdown, label_tags, union
from story_mirror.schemas import GitLabHookEvent, GitLabIssue, GitLabMergeRequest, StoryType

from .issue_importer import IssueImporter


class MergeRequestImporter(IssueImporter):
    """Imports merge requests the way issues are imported.

    GitLab is the system of record for merge requests: every field follows
    the remote object.
    """

    link_key: ClassVar[str] = "merge_request"
    collection: ClassVar[str] = "merge_requests"
    schema: ClassVar[type[GitLabIssue]] = GitLabMergeRequest

    def object_from_hook(self, hook: GitLabHookEvent, project_id: int) -> GitLabIssue:
        return hook.to_merge_request(project_id)

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
        if not isinstance(gl_object, GitLabMergeRequest):
            raise TypeError(f"Expected a merge request, got {type(gl_object).__name__}")
        ctx = self._ctx
        server = ctx.server
        tags = union(find_tags_in_markdown(gl_object.description), label_tags(gl_object.labels))
        milestone = gl_object.milestone.title if gl_object.milestone else None

        story_after = self._start(story, repo, project, gl_object)
        fields: list[tuple[str, object]] = [
            ("type", StoryType.MERGE_REQUEST.value),
            ("tags", tags),
            ("language_codes", [ctx.language_code]),
        ]
        if opener is not None:
            fields += [("user_ids", [opener["id"]]), ("role_ids", opener.get("role_ids") or [])]
        fields += [
            ("details.number", gl_object.iid),
            ("details.state", gl_object.state),
            ("details.branch", gl_object.target_branch),
            ("details.source_branch", gl_object.source_branch),
            ("details.labels", list(gl_object.labels)),
            ("details.title", gl_object.title),
            ("published", True),
            ("public", not gl_object.confidential),
            ("ptime", gl_object.created_at),
        ]
        for path, value in fields:
            import_property(story_after, server, path, value=value, overwrite="always")
        import_property(
            story_after, server, "details.milestone",
            value=milestone, overwrite="always", ignore=keep_milestone,
        )
        self._bump(story, story_after)
        return story_after
