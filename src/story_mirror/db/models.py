"""SQLAlchemy ORM models for Story Mirror."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)
from sqlalchemy.types import JSON


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Store naive UTC, hand back aware UTC.

    SQLite drops the offset of aware datetimes, which would make a freshly
    imported ``ptime`` compare unequal to the stored one on the next import.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ImportFailureStatus(str, Enum):
    """Status of an import failure for retry tracking."""

    PENDING = "pending"  # Waiting for retry
    RESOLVED = "resolved"  # Successfully retried
    PERMANENT = "permanent"  # Max retries exceeded or non-retryable error


# ------------------------------------------------------------------------------
# Shared columns for rows mirrored from an external server
# ------------------------------------------------------------------------------
class ExternalDataMixin:
    """Columns shared by every model that carries external links.

    ``DOCUMENT_FIELDS`` lists the columns importers read and write through
    plain dict documents (see ``ExternalDataRepository.to_document``).
    """

    DOCUMENT_FIELDS: ClassVar[tuple[str, ...]] = ("external", "details", "deleted", "itime", "etime")

    external: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    deleted: Mapped[bool] = mapped_column(default=False)

    # itime: last import, etime: last export
    itime: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    etime: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    ctime: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    mtime: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


# ------------------------------------------------------------------------------
# Server model
# ------------------------------------------------------------------------------
class Server(Base):
    """Configured external server (a GitLab instance)."""

    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(32), default="gitlab")
    name: Mapped[str] = mapped_column(String(100), unique=True)
    # {base_url, access_token, user: {mapping: {admin, user, external_user}, role_ids}}
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    disabled: Mapped[bool] = mapped_column(default=False)
    deleted: Mapped[bool] = mapped_column(default=False)
    ctime: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    mtime: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Server(id={self.id}, type='{self.type}', name='{self.name}')>"

    @property
    def base_url(self) -> str:
        """Base URL of the server, without a trailing slash."""
        return str(self.settings.get("base_url") or "").rstrip("/")

    @property
    def access_token(self) -> str | None:
        """Token used for API calls (an admin personal access token)."""
        return self.settings.get("access_token")


# ------------------------------------------------------------------------------
# Project model
# ------------------------------------------------------------------------------
class Project(Base):
    """Internal project that stories are published into."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    user_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    repo_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    deleted: Mapped[bool] = mapped_column(default=False)
    ctime: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    mtime: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


# ------------------------------------------------------------------------------
# Repo model
# ------------------------------------------------------------------------------
class Repo(ExternalDataMixin, Base):
    """Source repository mirrored from a GitLab project."""

    __tablename__ = "repos"

    DOCUMENT_FIELDS = (*ExternalDataMixin.DOCUMENT_FIELDS, "type", "name", "user_ids")

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(32), default="gitlab")
    name: Mapped[str] = mapped_column(String(200))
    user_ids: Mapped[list[int]] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<Repo(id={self.id}, name='{self.name}')>"


# ------------------------------------------------------------------------------
# User model
# ------------------------------------------------------------------------------
class User(ExternalDataMixin, Base):
    """Internal user, possibly linked to accounts on several servers."""

    __tablename__ = "users"

    DOCUMENT_FIELDS = (*ExternalDataMixin.DOCUMENT_FIELDS, "type", "username", "role_ids", "disabled")

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(32), default="guest")  # admin, regular, guest
    username: Mapped[str] = mapped_column(String(100))
    role_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    disabled: Mapped[bool] = mapped_column(default=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', type='{self.type}')>"


# ------------------------------------------------------------------------------
# Story model
# ------------------------------------------------------------------------------
class Story(ExternalDataMixin, Base):
    """One unit of activity in a project's feed."""

    __tablename__ = "stories"

    DOCUMENT_FIELDS = (
        *ExternalDataMixin.DOCUMENT_FIELDS,
        "project_id",
        "type",
        "user_ids",
        "role_ids",
        "tags",
        "language_codes",
        "public",
        "published",
        "ptime",
        "btime",
        "external_key",
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"))

    # --------------------------------------------------------------------------
    # Content
    # --------------------------------------------------------------------------
    type: Mapped[str] = mapped_column(String(32), default="post")
    user_ids: Mapped[list[int]] = mapped_column(JSON, default=list)  # first = primary author
    role_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    language_codes: Mapped[list[str]] = mapped_column(JSON, default=list)

    # --------------------------------------------------------------------------
    # Publication
    # --------------------------------------------------------------------------
    public: Mapped[bool] = mapped_column(default=True)
    published: Mapped[bool] = mapped_column(default=False)
    ptime: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)  # None = draft
    btime: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)  # bumped

    # Fingerprint of the tracked entity's link; NULL for one-off event stories
    external_key: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "external_key", name="uq_story_project_external_key"),
        Index("ix_stories_project_type", "project_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<Story(id={self.id}, project={self.project_id}, type='{self.type}')>"


# ------------------------------------------------------------------------------
# Reaction model
# ------------------------------------------------------------------------------
class Reaction(ExternalDataMixin, Base):
    """Response to a story: note, assignment, tracking link."""

    __tablename__ = "reactions"

    DOCUMENT_FIELDS = (
        *ExternalDataMixin.DOCUMENT_FIELDS,
        "project_id",
        "story_id",
        "type",
        "user_id",
        "public",
        "published",
        "ptime",
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"))
    story_id: Mapped[int] = mapped_column(ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(32))
    user_id: Mapped[int | None] = mapped_column(nullable=True)
    public: Mapped[bool] = mapped_column(default=True)
    published: Mapped[bool] = mapped_column(default=True)
    ptime: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Reaction(id={self.id}, story={self.story_id}, "
            f"type='{self.type}', user={self.user_id})>"
        )


# ------------------------------------------------------------------------------
# Commit model
# ------------------------------------------------------------------------------
class Commit(ExternalDataMixin, Base):
    """Commit fetched while reconstructing pushes."""

    __tablename__ = "commits"

    DOCUMENT_FIELDS = (
        *ExternalDataMixin.DOCUMENT_FIELDS,
        "initial_branch",
        "title_hash",
        "ptime",
        "external_key",
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    initial_branch: Mapped[str] = mapped_column(String(200))
    title_hash: Mapped[str] = mapped_column(String(32), index=True)
    ptime: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    external_key: Mapped[str | None] = mapped_column(String(200), nullable=True, unique=True)

    def __repr__(self) -> str:
        return f"<Commit(id={self.id}, branch='{self.initial_branch}')>"


# ------------------------------------------------------------------------------
# TaskLogEntry model
# ------------------------------------------------------------------------------
class TaskLogEntry(Base):
    """Progress and resumption record of one import run."""

    __tablename__ = "task_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    action: Mapped[str] = mapped_column(String(100))  # e.g. "gitlab-event-import"
    server_id: Mapped[int | None] = mapped_column(nullable=True)
    repo_id: Mapped[int | None] = mapped_column(nullable=True)
    project_id: Mapped[int | None] = mapped_column(nullable=True)
    options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)  # last_event_time, ...
    completion: Mapped[int] = mapped_column(default=0)  # percent
    failed: Mapped[bool] = mapped_column(default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_task_logs_action_target", "action", "server_id", "repo_id", "project_id"),
    )

    def __repr__(self) -> str:
        return f"<TaskLogEntry(id={self.id}, action='{self.action}', completion={self.completion})>"


# ------------------------------------------------------------------------------
# ImportFailure model
# ------------------------------------------------------------------------------
class ImportFailure(Base):
    """Track failed event imports for retry.

    Records failures during import runs, enabling:
    - Manual retry via `storymirror sync retry`
    - Failure analysis via `storymirror sync failures`
    """

    __tablename__ = "import_failures"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Where the event came from
    server_id: Mapped[int] = mapped_column(ForeignKey("servers.id", ondelete="CASCADE"))
    repo_id: Mapped[int] = mapped_column(ForeignKey("repos.id", ondelete="CASCADE"))
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"))

    # "event:<id>" for activity-log entries, "hook:<kind>:<id>" for webhooks
    event_key: Mapped[str] = mapped_column(String(200))
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_hook: Mapped[bool] = mapped_column(default=False)

    # Error details
    error_message: Mapped[str] = mapped_column(Text)
    error_type: Mapped[str] = mapped_column(String(100))  # e.g., "GitLabRetryableError"

    # Retry tracking
    retry_count: Mapped[int] = mapped_column(default=0)
    status: Mapped[ImportFailureStatus] = mapped_column(default=ImportFailureStatus.PENDING)

    # Timestamps
    failed_at: Mapped[datetime] = mapped_column(UTCDateTime)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    # Only one pending failure per event; resolved/permanent rows are history
    __table_args__ = (
        UniqueConstraint(
            "repo_id", "project_id", "event_key", "status", name="uq_import_failure_event_status"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ImportFailure(id={self.id}, repo_id={self.repo_id}, "
            f"event='{self.event_key}', status={self.status.value})>"
        )
