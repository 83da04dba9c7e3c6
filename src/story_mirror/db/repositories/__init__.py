"""Repository pattern implementation for database access.

Plain repositories wrap ORM rows; external-data repositories expose rows
as dict documents with find-by-link lookup.
"""

from .base import BaseRepository
from .commit import CommitRepository
from .external import ExternalDataRepository
from .import_failure import ImportFailureRepository
from .project import ProjectRepository
from .repo import RepoRepository
from .server import ServerRepository
from .story import ReactionRepository, StoryRepository
from .task_log import TaskLogRepository
from .user import UserRepository

__all__ = [
    "BaseRepository",
    "CommitRepository",
    "ExternalDataRepository",
    "ImportFailureRepository",
    "ProjectRepository",
    "ReactionRepository",
    "RepoRepository",
    "ServerRepository",
    "StoryRepository",
    "TaskLogRepository",
    "UserRepository",
]
