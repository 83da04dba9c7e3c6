"""Enums shared by importers, exporter and CLI."""

from enum import Enum, StrEnum


class StoryType(StrEnum):
    """Kinds of stories created from GitLab activity."""

    POST = "post"
    ISSUE = "issue"
    MERGE_REQUEST = "merge-request"
    MILESTONE = "milestone"
    PUSH = "push"
    MERGE = "merge"
    BRANCH = "branch"
    TAG = "tag"
    REPO = "repo"
    MEMBER = "member"
    WIKI = "wiki"


class ReactionType(StrEnum):
    """Kinds of reactions attached to stories."""

    NOTE = "note"
    ASSIGNMENT = "assignment"
    TRACKING = "tracking"


class UserType(StrEnum):
    """Internal user types a GitLab account can map to."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    REGULAR = "regular"
    GUEST = "guest"


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    JSON = "json"
