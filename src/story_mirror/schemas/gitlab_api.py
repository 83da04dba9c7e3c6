"""Pydantic schemas for parsing GitLab REST API responses.

These schemas map to the GitLab v4 REST API.
See: https://docs.gitlab.com/ee/api/rest/
"""

from typing import Any

from pydantic import Field

from .base import GitLabDateTime, GitLabModel


class GitLabUser(GitLabModel):
    """GitLab user object (``/users`` and embedded authors/assignees)."""

    id: int | None = Field(default=None, description="User ID (absent in some webhook payloads)")
    username: str = Field(description="GitLab username")
    name: str | None = Field(default=None, description="Display name")
    email: str | None = Field(default=None, description="Primary email (admin token only)")
    state: str = Field(default="active", description="Account state (active, blocked)")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")
    web_url: str | None = Field(default=None, description="Profile page URL")
    is_admin: bool = Field(default=False, description="Administrator flag")
    external: bool = Field(default=False, description="External (restricted) user flag")
    skype: str | None = Field(default=None, description="Skype username")
    twitter: str | None = Field(default=None, description="Twitter username")
    linkedin: str | None = Field(default=None, description="LinkedIn name")


class GitLabMember(GitLabUser):
    """Project member (``/projects/:id/members``)."""

    access_level: int = Field(default=0, description="Access level (10 guest .. 50 owner)")


class GitLabLabel(GitLabModel):
    """Project label (``/projects/:id/labels``)."""

    id: int | None = Field(default=None, description="Label ID")
    name: str = Field(description="Label name")
    color: str | None = Field(default=None, description="Label color (hex with #)")


class GitLabMilestone(GitLabModel):
    """Project milestone (``/projects/:id/milestones``)."""

    id: int = Field(description="Milestone ID (unique per server)")
    iid: int | None = Field(default=None, description="Milestone number within the project")
    title: str = Field(description="Milestone title")
    description: str | None = Field(default=None, description="Milestone description")
    state: str = Field(default="active", description="active or closed")
    due_date: str | None = Field(default=None, description="Due date (YYYY-MM-DD)")
    web_url: str | None = Field(default=None, description="Milestone page URL")
    created_at: GitLabDateTime | None = Field(default=None, description="Creation time")


class GitLabIssue(GitLabModel):
    """GitLab issue.

    From GitLab's documentation: ``id`` is unique across the server,
    ``iid`` only within a project.

    Maps to: GET /projects/:id/issues/:iid
    """

    id: int = Field(description="Issue ID")
    iid: int = Field(description="Issue number within the project")
    project_id: int | None = Field(default=None, description="GitLab project ID")
    title: str = Field(description="Issue title")
    description: str | None = Field(default=None, description="Issue body (markdown)")
    state: str = Field(default="opened", description="opened, closed or reopened")
    confidential: bool = Field(default=False, description="Confidential flag")
    labels: list[str] = Field(default_factory=list, description="Label names")
    milestone: GitLabMilestone | None = Field(default=None, description="Milestone")
    author: GitLabUser | None = Field(default=None, description="Issue author")
    assignee: GitLabUser | None = Field(default=None, description="Single assignee (older API)")
    assignees: list[GitLabUser] | None = Field(default=None, description="Assignees")
    web_url: str | None = Field(default=None, description="Issue page URL")
    created_at: GitLabDateTime = Field(description="Creation time")
    updated_at: GitLabDateTime | None = Field(default=None, description="Last update time")


class GitLabMergeRequest(GitLabIssue):
    """GitLab merge request.

    Maps to: GET /projects/:id/merge_requests/:iid
    """

    target_branch: str | None = Field(default=None, description="Branch merged into")
    source_branch: str | None = Field(default=None, description="Branch merged from")


class GitLabNote(GitLabModel):
    """Comment or system note on an issue or merge request."""

    id: int = Field(description="Note ID")
    body: str = Field(default="", description="Note text")
    system: bool = Field(default=False, description="Generated by GitLab (assignments, moves)")
    author: GitLabUser | None = Field(default=None, description="Note author")
    noteable_type: str | None = Field(default=None, description="Issue, MergeRequest, Commit")
    noteable_id: int | None = Field(default=None, description="ID of the commented object")
    noteable_iid: int | None = Field(default=None, description="Number of the commented object")
    created_at: GitLabDateTime | None = Field(default=None, description="Creation time")


class GitLabCommitComment(GitLabModel):
    """Comment on a commit (``/projects/:id/repository/commits/:sha/comments``)."""

    note: str = Field(description="Comment text")
    author: GitLabUser | None = Field(default=None, description="Comment author")
    path: str | None = Field(default=None, description="File commented on")
    line: int | None = Field(default=None, description="Line commented on")
    created_at: GitLabDateTime | None = Field(default=None, description="Creation time")


class GitLabCommit(GitLabModel):
    """GitLab commit (``/projects/:id/repository/commits/:sha``)."""

    id: str = Field(description="Full commit SHA")
    short_id: str | None = Field(default=None, description="Abbreviated SHA")
    title: str = Field(default="", description="First line of the message")
    message: str = Field(default="", description="Full commit message")
    parent_ids: list[str] = Field(default_factory=list, description="Parent SHAs")
    author_name: str | None = Field(default=None, description="Git author name")
    author_email: str | None = Field(default=None, description="Git author email")
    status: str | None = Field(default=None, description="Pipeline status")
    created_at: GitLabDateTime | None = Field(default=None, description="Commit time")
    committed_date: GitLabDateTime | None = Field(default=None, description="Committer time")


class GitLabDiff(GitLabModel):
    """One file of a commit diff (``/projects/:id/repository/commits/:sha/diff``)."""

    old_path: str = Field(description="Path before the commit")
    new_path: str = Field(description="Path after the commit")
    new_file: bool = Field(default=False, description="File was added")
    renamed_file: bool = Field(default=False, description="File was renamed")
    deleted_file: bool = Field(default=False, description="File was deleted")
    diff: str = Field(default="", description="Unified diff text")


class GitLabPushData(GitLabModel):
    """``push_data`` of a push activity-log entry."""

    commit_count: int = Field(default=0, description="Number of commits pushed")
    action: str = Field(default="pushed", description="pushed, created or removed")
    ref_type: str = Field(default="branch", description="branch or tag")
    commit_from: str | None = Field(default=None, description="Previous head (tail)")
    commit_to: str | None = Field(default=None, description="New head")
    ref: str | None = Field(default=None, description="Branch or tag name")
    commit_title: str | None = Field(default=None, description="Title of the head commit")


class GitLabEvent(GitLabModel):
    """Activity-log entry (``/projects/:id/events``)."""

    id: int | None = Field(default=None, description="Event ID")
    project_id: int | None = Field(default=None, description="GitLab project ID")
    action_name: str = Field(description="e.g. opened, closed, pushed to, commented on")
    target_id: int | None = Field(default=None, description="ID of the target object")
    target_iid: int | None = Field(default=None, description="Number of the target object")
    target_type: str | None = Field(default=None, description="Issue, MergeRequest, Note, ...")
    target_title: str | None = Field(default=None, description="Title of the target object")
    author_id: int | None = Field(default=None, description="Acting user ID")
    author_username: str | None = Field(default=None, description="Acting username")
    author: GitLabUser | None = Field(default=None, description="Acting user")
    created_at: GitLabDateTime = Field(description="Event time")
    push_data: GitLabPushData | None = Field(default=None, description="Push details")
    data: dict[str, Any] | None = Field(default=None, description="Push details (older servers)")
    note: GitLabNote | None = Field(default=None, description="Note of a comment event")

    @property
    def event_key(self) -> str:
        """Stable identity used when recording failures."""
        if self.id is not None:
            return f"event:{self.id}"
        return f"event:{self.action_name}:{self.target_id}:{self.created_at.isoformat()}"


class GitLabProject(GitLabModel):
    """GitLab project (``/projects``)."""

    id: int = Field(description="Project ID")
    name: str = Field(description="Project name")
    path_with_namespace: str | None = Field(default=None, description="group/project")
    description: str | None = Field(default=None, description="Project description")
    web_url: str | None = Field(default=None, description="Project page URL")
    issues_enabled: bool = Field(default=True, description="Issue tracker enabled")
    archived: bool = Field(default=False, description="Archived flag")
    default_branch: str | None = Field(default=None, description="Default branch")
    creator_id: int | None = Field(default=None, description="User who created the project")
    created_at: GitLabDateTime | None = Field(default=None, description="Creation time")


class GitLabTreeEntry(GitLabModel):
    """Entry of a repository tree listing."""

    id: str = Field(description="Blob or tree SHA")
    name: str = Field(description="File name")
    type: str = Field(description="blob or tree")
    path: str = Field(description="Path from the repository root")


class GitLabFile(GitLabModel):
    """File fetched through ``/projects/:id/repository/files/:path``."""

    file_name: str = Field(description="File name")
    file_path: str = Field(description="Path from the repository root")
    content: str = Field(default="", description="Content, encoded as ``encoding``")
    encoding: str = Field(default="base64", description="Content encoding")
    blob_id: str | None = Field(default=None, description="Blob SHA")
