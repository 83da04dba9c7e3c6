"""Issue exporter: stories out to GitLab issues.

A story is exported by naming the repo it should live in. Depending on
where the story was exported before, that creates, updates, moves or
removes the issue. Fields the exporter writes are tracked in the story's
``_export`` snapshot, so an edit made on GitLab since the last export is
not overwritten.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.config import get_settings
from story_mirror.db.models import Project, Server
from story_mirror.db.repositories import (
    ReactionRepository,
    RepoRepository,
    ServerRepository,
    StoryRepository,
    TaskLogRepository,
    UserRepository,
)
from story_mirror.external import (
    IMPORT_SNAPSHOT,
    DataNotFoundError,
    Document,
    export_property,
    find_link,
    find_link_by_server_type,
    fingerprint,
    import_property,
    inherit_link,
    public_part,
    remove_link,
)
from story_mirror.external.text import attach_resources, escape_markdown, label_tags, union
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabIssue, ReactionType, StoryType

from ..transport import GitLabTransport
from .enums import ImportAction, TaskAction
from .results import ImportResult
from .task_log import TaskLog

logger = get_logger(__name__)

TransportFactory = Callable[[Server], GitLabTransport]

EXPORTED_FIELDS = ("title", "description", "confidential", "labels")
ISSUE_REACTIONS = [
    ReactionType.TRACKING.value,
    ReactionType.NOTE.value,
    ReactionType.ASSIGNMENT.value,
]


class IssueExporter:
    """Exports stories to GitLab issue trackers.

    Usage:
        async with get_session() as session:
            async with IssueExporter(session) as exporter:
                result = await exporter.export_story(
                    project, story_id, repo_id=4, user_id=12, options={"labels": ["bug"]}
                )

    Args:
        session: Session the story, reactions and task log are written through
        transport_factory: Builds the transport of a server (tests inject fakes)
    """

    def __init__(
        self,
        session: AsyncSession,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._session = session
        self._transport_factory = transport_factory or GitLabTransport
        self._transports: dict[int, GitLabTransport] = {}
        self._site_address = get_settings().site_address
        self.servers = ServerRepository(session)
        self.repos = RepoRepository(session)
        self.users = UserRepository(session)
        self.stories = StoryRepository(session)
        self.reactions = ReactionRepository(session)
        self.task_logs = TaskLogRepository(session)

    async def close(self) -> None:
        """Close the transports opened by this exporter."""
        for transport in self._transports.values():
            await transport.close()
        self._transports.clear()

    async def __aenter__(self) -> IssueExporter:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------
    async def export_story(
        self,
        project: Project,
        story_id: int,
        repo_id: int | None,
        user_id: int,
        options: dict[str, Any] | None = None,
    ) -> ImportResult:
        """Export a story to the issue tracker of ``repo_id``.

        Args:
            project: Project the story belongs to
            story_id: Story to export
            repo_id: Destination repo (None removes the issue)
            user_id: Internal user performing the export
            options: ``title`` and ``labels`` of the issue

        Returns:
            Result with the story as stored afterwards

        Raises:
            DataNotFoundError: If the story, a repo, its server or the user is
                missing, or the user has no account on the server
        """
        options = options or {}
        task_log = await TaskLog.start(
            self.task_logs,
            TaskAction.ISSUE_EXPORT,
            repo_id=repo_id,
            project_id=project.id,
            options={"story_id": story_id, "user_id": user_id, **options},
        )
        try:
            story = await self.find_source_story(project, story_id)
            user = await self.find_acting_user(user_id)
            repo_after = await self.find_destination_repo(repo_id)
            repo_before = await self.find_current_repo(story)
            if repo_before is not None and repo_after is not None:
                if repo_before["id"] == repo_after["id"]:
                    result = await self.export_update(project, story, repo_after, user, options)
                else:
                    result = await self.export_move(
                        project, story, repo_before, repo_after, user, options
                    )
            elif repo_after is not None:
                result = await self.export_create(project, story, repo_after, user, options)
            elif repo_before is not None:
                result = await self.export_remove(project, story, repo_before)
            else:
                result = ImportResult.skipped("story", "story is not exported and has no destination")
            task_log.set("action", result.action.value)
            await task_log.finish()
        except Exception as e:
            await task_log.abort(e)
            raise
        return result

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    async def export_create(
        self,
        project: Project,
        story: Document,
        repo: Document,
        user: Document,
        options: dict[str, Any],
    ) -> ImportResult:
        """Create an issue for a story that has not been exported to ``repo``'s server."""
        saved = await self._create_issue(project, story, repo, user, options)
        return ImportResult("story", ImportAction.CREATED, document=saved)

    async def _create_issue(
        self,
        project: Project,
        story: Document,
        repo: Document,
        user: Document,
        options: dict[str, Any],
    ) -> Document:
        server = await self.find_repo_server(repo)
        transport = self.get_transport(server)
        gl_user_id = self._gitlab_user_id(user, server)
        authors = await self.find_authors(story)
        project_id = self._project_id(repo, server)

        story_after = copy.deepcopy(story)
        # the snapshot needs a link to live in before the issue exists
        inherit_link(story_after, server, repo)
        issue_after = self.export_issue_properties(
            {}, story_after, server, authors, user, options
        )
        gl_issue = await self.save_issue(transport, project_id, None, issue_after, gl_user_id)
        self.copy_issue_properties(story_after, server, repo, gl_issue)
        saved = await self.stories.update_one(story_after)

        tracking = self.copy_tracking_properties(None, server, project, saved, user)
        await self.reactions.insert_one(tracking)
        logger.info(
            "Exported story #{} as issue #{} of project {}", saved["id"], gl_issue.iid, project_id
        )
        return saved

    async def export_update(
        self,
        project: Project,
        story: Document,
        repo: Document,
        user: Document,
        options: dict[str, Any],
    ) -> ImportResult:
        """Apply a story's changes to the issue it was exported as."""
        server = await self.find_repo_server(repo)
        transport = self.get_transport(server)
        gl_user_id = self._gitlab_user_id(user, server)
        authors = await self.find_authors(story)
        link = self._issue_link(story, server)
        project_id, number = link["project"]["id"], link["issue"]["number"]

        gl_issue = await transport.fetch(f"/projects/{project_id}/issues/{number}")
        current = {name: gl_issue.get(name) for name in EXPORTED_FIELDS}
        story_after = copy.deepcopy(story)
        issue_after = self.export_issue_properties(
            current, story_after, server, authors, user, options
        )
        if issue_after == current:
            return ImportResult("story", ImportAction.UNCHANGED, document=story)

        updated = await self.save_issue(transport, project_id, number, issue_after, gl_user_id)
        self.copy_issue_properties(story_after, server, repo, updated)
        saved = await self.stories.update_one(story_after)
        return ImportResult("story", ImportAction.UPDATED, document=saved)

    async def export_move(
        self,
        project: Project,
        story: Document,
        repo_before: Document,
        repo_after: Document,
        user: Document,
        options: dict[str, Any],
    ) -> ImportResult:
        """Move an exported issue to another repo.

        Within one server GitLab moves the issue; across servers the issue
        is created on the new server and removed from the old one.
        """
        server_before = await self.find_repo_server(repo_before)
        server_after = await self.find_repo_server(repo_after)
        if server_before.id != server_after.id:
            saved = await self._create_issue(project, story, repo_after, user, options)
            await self._remove_issue(project, saved, server_before)
            return ImportResult("story", ImportAction.CREATED, document=saved)

        server = server_after
        transport = self.get_transport(server)
        gl_user_id = self._gitlab_user_id(user, server)
        link = self._issue_link(story, server)
        moved = GitLabIssue.model_validate(
            await transport.post(
                f"/projects/{link['project']['id']}/issues/{link['issue']['number']}/move",
                {"to_project_id": self._project_id(repo_after, server)},
                gl_user_id,
            )
        )
        story_after = copy.deepcopy(story)
        self.copy_issue_properties(story_after, server, repo_after, moved)
        saved = await self.stories.update_one(story_after)

        # reactions follow the issue to its new project
        story_link = public_part(self._issue_link(saved, server))
        reactions = await self.reactions.find(
            {"story_id": saved["id"], "type": ISSUE_REACTIONS, "deleted": False}
        )
        for reaction in reactions:
            reaction_after = copy.deepcopy(reaction)
            reaction_link = find_link(reaction_after, server)
            if reaction_link is not None:
                reaction_link.update(story_link)
            await self.reactions.save_if_changed(reaction, reaction_after)
        if not any(
            r["type"] == ReactionType.TRACKING.value and r["user_id"] == user["id"]
            for r in reactions
        ):
            tracking = self.copy_tracking_properties(None, server, project, saved, user)
            await self.reactions.insert_one(tracking)
        logger.info("Moved issue of story #{} to {}", saved["id"], repo_after.get("name"))
        return ImportResult("story", ImportAction.UPDATED, document=saved)

    async def export_remove(self, project: Project, story: Document, repo: Document) -> ImportResult:
        """Delete the issue and turn the story back into a post."""
        server = await self.find_repo_server(repo)
        saved = await self._remove_issue(project, story, server)
        story_after = copy.deepcopy(saved)
        story_after["type"] = StoryType.POST.value
        story_after["etime"] = None
        for name in ("title", "labels", "number", "exported"):
            story_after["details"].pop(name, None)
        saved = await self.stories.update_one(story_after)
        return ImportResult("story", ImportAction.DELETED, document=saved)

    async def _remove_issue(self, project: Project, story: Document, server: Server) -> Document:
        """Delete the remote issue, unlink the story and retire the issue's reactions."""
        transport = self.get_transport(server)
        link = self._issue_link(story, server)
        # deleting issues takes owner rights, so this runs as the token owner
        await transport.remove(f"/projects/{link['project']['id']}/issues/{link['issue']['number']}")

        story_after = copy.deepcopy(story)
        remove_link(story_after, server)
        if story_after.get("external_key") == fingerprint(link, "project", "issue"):
            # a cross-server move already keyed the story to the new issue
            story_after["external_key"] = None
        saved = await self.stories.update_one(story_after)
        reactions = await self.reactions.find(
            {"story_id": saved["id"], "type": ISSUE_REACTIONS, "deleted": False},
            link={"server_id": server.id},
        )
        for reaction in reactions:
            await self.reactions.update_one({**reaction, "deleted": True})
        logger.info("Removed issue of story #{} from project {}", saved["id"], link["project"]["id"])
        return saved

    # -------------------------------------------------------------------------
    # Field copies
    # -------------------------------------------------------------------------
    def export_issue_properties(
        self,
        current: dict[str, Any],
        story: Document,
        server: Server,
        authors: list[Document],
        user: Document,
        options: dict[str, Any],
    ) -> dict[str, Any]:
        """Build the issue fields to send, leaving fields edited on GitLab alone."""
        details = story.get("details") or {}
        title = options.get("title") or details.get("title") or ""
        labels = options.get("labels")
        if labels is None:
            labels = details.get("labels") or []
        issue_after = copy.deepcopy(current)
        for path, value in (
            ("title", title),
            ("description", self.generate_issue_text(story, authors, user)),
            ("confidential", not story.get("public", True)),
            ("labels", list(labels)),
        ):
            export_property(
                story, server, path, issue_after, value=value, overwrite=f"match-previous:{path}"
            )
        return issue_after

    def generate_issue_text(self, story: Document, authors: list[Document], user: Document) -> str:
        """Render the story's text (and media) as the issue description.

        When someone exports another user's story, the text opens with a
        line naming the authors.
        """
        details = story.get("details") or {}
        versions = details.get("text") or {}
        text = "\n\n".join(value for value in versions.values() if value)
        if not details.get("markdown"):
            text = escape_markdown(text)

        resources = details.get("resources") or []
        if [author["id"] for author in authors] != [user["id"]] and authors:
            names = _join_names([_display_name(author) for author in authors])
            opening = None
            if text.strip():
                opening = f"{names} wrote:"
            else:
                counts = {
                    kind: sum(1 for resource in resources if resource.get("type") == kind)
                    for kind in ("image", "video", "audio")
                }
                attached = [
                    f"{count} {kind}{'s' if count > 1 else ''}"
                    for kind, count in counts.items()
                    if count
                ]
                if attached:
                    opening = f"{names} posted {_join_names(attached)}:"
            if opening:
                text = escape_markdown(opening) + ("\n\n" + text if text else "")
        return attach_resources(text, resources, self._site_address)

    def copy_issue_properties(
        self, story_after: Document, server: Server, repo: Document, gl_issue: GitLabIssue
    ) -> None:
        """Record the issue a story was exported as (in place)."""
        link = find_link(story_after, server)
        project_id = self._project_id(repo, server)
        if link is not None and (link.get("project") or {}).get("id") != project_id:
            # moved: the link follows the issue, snapshots are carried over
            snapshots = {name: value for name, value in link.items() if name.startswith("_")}
            remove_link(story_after, server)
            link = inherit_link(story_after, server, repo)
            link.update(snapshots)
        elif link is None:
            link = inherit_link(story_after, server, repo)
        link["issue"] = {"id": gl_issue.id, "number": gl_issue.iid}
        story_after["external_key"] = fingerprint(link, "project", "issue")

        tags = union(story_after.get("tags") or [], label_tags(gl_issue.labels))
        for path, value in (
            ("type", StoryType.ISSUE.value),
            ("tags", tags),
            ("details.title", gl_issue.title),
            ("details.labels", list(gl_issue.labels)),
            ("details.number", gl_issue.iid),
            ("details.exported", True),
        ):
            import_property(story_after, server, path, value=value, overwrite="always")
        # imports of later edits on GitLab compare against the exported issue
        snapshot = link.setdefault(IMPORT_SNAPSHOT, {})
        snapshot["title"] = gl_issue.title
        snapshot["labels"] = list(gl_issue.labels)
        story_after["etime"] = datetime.now(UTC)

    def copy_tracking_properties(
        self,
        reaction: Document | None,
        server: Server,
        project: Project,
        story: Document,
        user: Document,
    ) -> Document:
        """Build the ``tracking`` reaction recording who exported a story."""
        reaction_after = copy.deepcopy(reaction) if reaction else {}
        inherit_link(reaction_after, server, story)
        for path, value in (
            ("type", ReactionType.TRACKING.value),
            ("project_id", project.id),
            ("story_id", story["id"]),
            ("user_id", user["id"]),
            ("public", story.get("public", True)),
            ("published", True),
            ("ptime", datetime.now(UTC)),
        ):
            import_property(reaction_after, server, path, value=value, overwrite="always")
        reaction_after["itime"] = datetime.now(UTC)
        return reaction_after

    # -------------------------------------------------------------------------
    # Remote calls
    # -------------------------------------------------------------------------
    async def save_issue(
        self,
        transport: GitLabTransport,
        project_id: int,
        number: int | None,
        issue: dict[str, Any],
        gl_user_id: int,
    ) -> GitLabIssue:
        """POST a new issue, or PUT the fields of an existing one."""
        payload = {
            "title": issue.get("title"),
            "description": issue.get("description"),
            "confidential": issue.get("confidential"),
            "labels": ",".join(issue.get("labels") or []),
        }
        if number is None:
            data = await transport.post(f"/projects/{project_id}/issues", payload, gl_user_id)
        else:
            data = await transport.put(f"/projects/{project_id}/issues/{number}", payload, gl_user_id)
        return GitLabIssue.model_validate(data)

    def get_transport(self, server: Server) -> GitLabTransport:
        """Return the transport of a server, opening it on first use."""
        transport = self._transports.get(server.id)
        if transport is None:
            transport = self._transport_factory(server)
            self._transports[server.id] = transport
        return transport

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------
    async def find_source_story(self, project: Project, story_id: int) -> Document:
        story = await self.stories.get_document(story_id)
        if story is None or story["deleted"] or story["project_id"] != project.id:
            raise DataNotFoundError(f"Story #{story_id} not found in project {project.name}")
        return story

    async def find_destination_repo(self, repo_id: int | None) -> Document | None:
        if not repo_id:
            return None
        repo = await self.repos.get_document(repo_id)
        if repo is None or repo["deleted"]:
            raise DataNotFoundError(f"Repo #{repo_id} not found")
        return repo

    async def find_current_repo(self, story: Document) -> Document | None:
        """Return the repo a story was exported to, or None if it never was."""
        link = find_link_by_server_type(story, "gitlab")
        if link is None or "issue" not in link:
            return None
        probe = {name: value for name, value in public_part(link).items() if name != "issue"}
        repo = await self.repos.find_one_by_link(probe, {"deleted": False})
        if repo is None:
            raise DataNotFoundError(f"Repo of the issue of story #{story['id']} not found")
        return repo

    async def find_repo_server(self, repo: Document) -> Server:
        link = find_link_by_server_type(repo, "gitlab")
        if link is None:
            raise DataNotFoundError(f"Repo #{repo['id']} is not linked to a GitLab server")
        server = await self.servers.get_by_id(link["server_id"])
        if server is None or server.deleted:
            raise DataNotFoundError(f"Server #{link['server_id']} not found")
        if server.disabled:
            raise DataNotFoundError(f"Server {server.name!r} is disabled")
        return server

    async def find_acting_user(self, user_id: int) -> Document:
        user = await self.users.get_document(user_id)
        if user is None or user["deleted"]:
            raise DataNotFoundError(f"User #{user_id} not found")
        return user

    async def find_authors(self, story: Document) -> list[Document]:
        user_ids = story.get("user_ids") or []
        if not user_ids:
            return []
        authors = await self.users.find({"id": user_ids, "deleted": False})
        # keep the story's author order
        return sorted(authors, key=lambda author: user_ids.index(author["id"]))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    @staticmethod
    def _gitlab_user_id(user: Document, server: Server) -> int:
        link = find_link(user, server)
        if link is None or "user" not in link:
            raise DataNotFoundError(
                f"User {user.get('username')!r} is not associated with a {server.name} account"
            )
        return link["user"]["id"]

    @staticmethod
    def _issue_link(story: Document, server: Server) -> dict[str, Any]:
        link = find_link(story, server)
        if link is None or "issue" not in link:
            raise DataNotFoundError(f"Story #{story['id']} has no issue on {server.name}")
        return link

    @staticmethod
    def _project_id(repo: Document, server: Server) -> int:
        link = find_link(repo, server)
        if link is None:
            raise DataNotFoundError(f"Repo #{repo['id']} is not linked to {server.name}")
        return link["project"]["id"]


def _display_name(user: Document) -> str:
    return (user.get("details") or {}).get("name") or user.get("username") or f"#{user['id']}"


def _join_names(names: list[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]
