"""Pydantic schemas for GitLab webhook payloads.

See: https://docs.gitlab.com/ee/user/project/integrations/webhook_events.html
"""

from typing import Any

from pydantic import Field

from .base import GitLabModel
from .gitlab_api import GitLabIssue, GitLabMergeRequest, GitLabUser


class GitLabHookLabel(GitLabModel):
    """Label as embedded in webhook payloads (``title`` rather than ``name``)."""

    id: int | None = Field(default=None, description="Label ID")
    title: str = Field(description="Label name")


class GitLabHookEvent(GitLabModel):
    """Project webhook payload (issue, merge_request, note, push, ...)."""

    object_kind: str = Field(description="issue, merge_request, note, push, wiki_page, ...")
    user: GitLabUser | None = Field(default=None, description="User who triggered the event")
    user_id: int | None = Field(default=None, description="Triggering user ID (push hooks)")
    project_id: int | None = Field(default=None, description="GitLab project ID")
    object_attributes: dict[str, Any] = Field(
        default_factory=dict, description="Attributes of the changed object"
    )
    labels: list[GitLabHookLabel] = Field(default_factory=list, description="Current labels")
    assignee: GitLabUser | None = Field(default=None, description="Single assignee (older hooks)")
    assignees: list[GitLabUser] | None = Field(default=None, description="Current assignees")
    commit: dict[str, Any] | None = Field(default=None, description="Commit of a commit note")

    @property
    def action(self) -> str | None:
        """``object_attributes.action`` (open, update, close, ...)."""
        return self.object_attributes.get("action")

    @property
    def event_key(self) -> str:
        """Stable identity used when recording failures."""
        object_id = self.object_attributes.get("id")
        return f"hook:{self.object_kind}:{object_id}:{self.object_attributes.get('updated_at')}"

    def _object_fields(self, project_id: int) -> dict[str, Any]:
        fields = {
            name: value for name, value in self.object_attributes.items() if name != "action"
        }
        fields["project_id"] = project_id
        fields["labels"] = [label.title for label in self.labels]
        # hooks name the embedded user objects differently than the REST API
        fields.pop("assignee", None)
        fields.pop("assignees", None)
        fields.pop("milestone", None)
        if self.assignees is not None:
            fields["assignees"] = [assignee.model_dump() for assignee in self.assignees]
        if self.assignee is not None:
            assignee = self.assignee.model_dump()
            assignee["id"] = self.object_attributes.get("assignee_id", assignee.get("id"))
            fields["assignee"] = assignee
        return fields

    def to_issue(self, project_id: int) -> GitLabIssue:
        """Build the REST-shaped issue described by an ``issue`` hook."""
        return GitLabIssue.model_validate(self._object_fields(project_id))

    def to_merge_request(self, project_id: int) -> GitLabMergeRequest:
        """Build the REST-shaped merge request described by a ``merge_request`` hook."""
        return GitLabMergeRequest.model_validate(self._object_fields(project_id))


class GitLabSystemHookEvent(GitLabModel):
    """Server-wide system hook payload (project and user lifecycle)."""

    event_name: str = Field(description="project_create, user_create, ...")
    project_id: int | None = Field(default=None, description="Affected project")
    user_id: int | None = Field(default=None, description="Affected user")
