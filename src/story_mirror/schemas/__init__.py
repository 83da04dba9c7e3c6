"""Pydantic schemas for Story Mirror.

GitLab REST responses and webhook payloads are parsed into these models
before the importers read them.
"""

from .base import GitLabDateTime, GitLabModel
from .enums import OutputFormat, ReactionType, StoryType, UserType
from .gitlab_api import (
    GitLabCommit,
    GitLabCommitComment,
    GitLabDiff,
    GitLabEvent,
    GitLabFile,
    GitLabIssue,
    GitLabLabel,
    GitLabMember,
    GitLabMergeRequest,
    GitLabMilestone,
    GitLabNote,
    GitLabProject,
    GitLabPushData,
    GitLabTreeEntry,
    GitLabUser,
)
from .hooks import GitLabHookEvent, GitLabHookLabel, GitLabSystemHookEvent

__all__ = [
    # Base
    "GitLabDateTime",
    "GitLabModel",
    # Enums
    "OutputFormat",
    "ReactionType",
    "StoryType",
    "UserType",
    # GitLab API
    "GitLabCommit",
    "GitLabCommitComment",
    "GitLabDiff",
    "GitLabEvent",
    "GitLabFile",
    "GitLabIssue",
    "GitLabLabel",
    "GitLabMember",
    "GitLabMergeRequest",
    "GitLabMilestone",
    "GitLabNote",
    "GitLabProject",
    "GitLabPushData",
    "GitLabTreeEntry",
    "GitLabUser",
    # Webhooks
    "GitLabHookEvent",
    "GitLabHookLabel",
    "GitLabSystemHookEvent",
]
