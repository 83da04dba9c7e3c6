"""Enums for import operations."""

from enum import Enum


class ImportAction(str, Enum):
    """What an importer did with one external object."""

    CREATED = "created"
    """A new row was inserted."""

    UPDATED = "updated"
    """An existing row was changed."""

    UNCHANGED = "unchanged"
    """The row already matched the external object; nothing was written."""

    DELETED = "deleted"
    """The row was flagged deleted (object moved or vanished)."""

    SKIPPED = "skipped"
    """The event was dropped (unknown kind, unresolved user, missing target)."""


class TaskAction(str, Enum):
    """Task log action names."""

    EVENT_IMPORT = "gitlab-event-import"
    HOOK_IMPORT = "gitlab-hook-import"
    USER_IMPORT = "gitlab-user-import"
    REPO_IMPORT = "gitlab-repo-import"
    MILESTONE_IMPORT = "gitlab-milestone-import"
    PUSH_IMPORT = "gitlab-push-import"
    ISSUE_EXPORT = "gitlab-issue-export"
