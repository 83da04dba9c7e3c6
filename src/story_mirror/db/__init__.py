"""Database module for Story Mirror."""

from story_mirror.db.engine import (
    create_tables,
    dispose_engine,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
)
from story_mirror.db.models import (
    Base,
    Commit,
    ExternalDataMixin,
    ImportFailure,
    ImportFailureStatus,
    Project,
    Reaction,
    Repo,
    Server,
    Story,
    TaskLogEntry,
    User,
)
from story_mirror.db.repositories import (
    BaseRepository,
    CommitRepository,
    ExternalDataRepository,
    ImportFailureRepository,
    ProjectRepository,
    ReactionRepository,
    RepoRepository,
    ServerRepository,
    StoryRepository,
    TaskLogRepository,
    UserRepository,
)

__all__ = [
    # Models
    "Base",
    "Commit",
    "ExternalDataMixin",
    "ImportFailure",
    "ImportFailureStatus",
    "Project",
    "Reaction",
    "Repo",
    "Server",
    "Story",
    "TaskLogEntry",
    "User",
    # Engine
    "create_tables",
    "dispose_engine",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    # Repositories
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
