"""Shared state of one import run.

An ``ImportContext`` bundles what every importer needs: the session's
repositories, the transport to the server, the server itself, and the
caches the run owns. Caches are plain objects created by the caller and
passed in, so separate runs never share hidden state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.config import get_settings
from story_mirror.db.models import Server
from story_mirror.db.repositories import (
    CommitRepository,
    ImportFailureRepository,
    ProjectRepository,
    ReactionRepository,
    RepoRepository,
    ServerRepository,
    StoryRepository,
    TaskLogRepository,
    UserRepository,
)
from story_mirror.external import DataNotFoundError, Document, find_link
from story_mirror.gitlab.exceptions import GitLabNotFoundError
from story_mirror.gitlab.transport import GitLabTransport

if TYPE_CHECKING:
    from .push_decorator import DescriptionCache


class IssueNumberCache:
    """Maps GitLab issue and merge-request ids to their per-project numbers.

    Activity-log entries only carry the server-wide ``id`` of their target,
    while the REST API addresses issues by number (``iid``). The mapping is
    filled by scanning the project's listing once.
    """

    def __init__(self) -> None:
        self._numbers: dict[tuple[int, int, str], dict[int, int]] = {}

    def get(
        self, server_id: int, project_id: int, object_id: int, collection: str = "issues"
    ) -> int | None:
        """Return a known number, or None."""
        return self._numbers.get((server_id, project_id, collection), {}).get(object_id)

    def remember(
        self,
        server_id: int,
        project_id: int,
        object_id: int,
        number: int,
        collection: str = "issues",
    ) -> None:
        """Record the number of an object."""
        self._numbers.setdefault((server_id, project_id, collection), {})[object_id] = number

    async def resolve(
        self,
        transport: GitLabTransport,
        project_id: int,
        object_id: int,
        collection: str = "issues",
    ) -> int:
        """Return the number of an object, scanning the project's listing if needed.

        Raises:
            GitLabNotFoundError: If the object is not in the listing
        """
        server_id = transport.server.id
        number = self.get(server_id, project_id, object_id, collection)
        if number is not None:
            return number

        async def scan(item: dict, index: int, total: int | None) -> bool:
            self.remember(server_id, project_id, item["id"], item["iid"], collection)
            return item["id"] != object_id

        await transport.fetch_each(f"/projects/{project_id}/{collection}", {}, scan)
        number = self.get(server_id, project_id, object_id, collection)
        if number is None:
            raise GitLabNotFoundError(
                f"{collection} #{object_id} not found in project {project_id}", 404
            )
        return number


def _description_cache() -> DescriptionCache:
    from .push_decorator import DescriptionCache

    return DescriptionCache()


@dataclass
class ImportContext:
    """Everything an importer needs for one run against one server.

    Usage:
        async with get_session() as session, GitLabTransport(server) as transport:
            ctx = ImportContext(session, transport)
            importer = IssueImporter(ctx)
    """

    session: AsyncSession
    transport: GitLabTransport
    language_code: str = field(default_factory=lambda: get_settings().default_language_code)
    issue_numbers: IssueNumberCache = field(default_factory=IssueNumberCache)
    descriptions: DescriptionCache = field(default_factory=_description_cache)
    write_lock: asyncio.Lock | None = None

    servers: ServerRepository = field(init=False)
    projects: ProjectRepository = field(init=False)
    repos: RepoRepository = field(init=False)
    users: UserRepository = field(init=False)
    stories: StoryRepository = field(init=False)
    reactions: ReactionRepository = field(init=False)
    commits: CommitRepository = field(init=False)
    task_logs: TaskLogRepository = field(init=False)
    failures: ImportFailureRepository = field(init=False)

    def __post_init__(self) -> None:
        lock = self.write_lock
        self.servers = ServerRepository(self.session, lock)
        self.projects = ProjectRepository(self.session, lock)
        self.repos = RepoRepository(self.session, lock)
        self.users = UserRepository(self.session, lock)
        self.stories = StoryRepository(self.session, lock)
        self.reactions = ReactionRepository(self.session, lock)
        self.commits = CommitRepository(self.session, lock)
        self.task_logs = TaskLogRepository(self.session, lock)
        self.failures = ImportFailureRepository(self.session, lock)

    @property
    def server(self) -> Server:
        """Server the transport talks to."""
        return self.transport.server

    def project_id(self, repo: Document) -> int:
        """GitLab project id of a repo, read from its link to the server.

        Raises:
            DataNotFoundError: If the repo is not linked to the server
        """
        link = find_link(repo, self.server)
        if link is None:
            raise DataNotFoundError(f"Repo #{repo['id']} is not linked to {self.server.name}")
        return link["project"]["id"]

