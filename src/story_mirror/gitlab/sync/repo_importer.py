"""Repo importer: GitLab projects to internal repos, repo events to stories."""

from __future__ import annotations

import copy

from story_mirror.db.models import Project
from story_mirror.external import (
    Document,
    add_link,
    create_link,
    find_link,
    import_property,
    inherit_link,
)
from story_mirror.logging import get_logger
from story_mirror.schemas import (
    GitLabEvent,
    GitLabLabel,
    GitLabMember,
    GitLabProject,
    GitLabUser,
    StoryType,
)

from .context import ImportContext
from .enums import TaskAction
from .results import ImportResult
from .task_log import TaskLog
from .user_importer import UserImporter

logger = get_logger(__name__)


class RepoImporter:
    """Imports the projects of a GitLab server as repos.

    Usage:
        importer = RepoImporter(ctx)
        repos = await importer.import_repositories()
    """

    def __init__(self, ctx: ImportContext, users: UserImporter | None = None) -> None:
        self._ctx = ctx
        self._users = users or UserImporter(ctx)

    async def import_repositories(self) -> list[Document]:
        """Find or create a repo for every GitLab project on the server.

        Repos whose project is gone are marked deleted; a project that comes
        back restores its repo. Members that a repo gains are added to the
        internal projects that include the repo.

        Returns:
            The imported repos as stored
        """
        ctx = self._ctx
        server = ctx.server
        task_log = await TaskLog.start(ctx.task_logs, TaskAction.REPO_IMPORT, server_id=server.id)
        repos_after: list[Document] = []
        try:
            repos = await ctx.repos.find_by_link(create_link(server))
            gl_repos = [
                GitLabProject.model_validate(data)
                for data in await ctx.transport.fetch_all("/projects")
            ]

            gl_repo_ids = {gl_repo.id for gl_repo in gl_repos}
            for repo in repos:
                link = find_link(repo, server) or {}
                if repo["deleted"] or link.get("project", {}).get("id") in gl_repo_ids:
                    continue
                await ctx.repos.update_one({**repo, "deleted": True})
                task_log.append("deleted", repo["name"])
                logger.info("Repo {} no longer exists on {}", repo["name"], server.name)

            for index, gl_repo in enumerate(gl_repos):
                members = await self._import_members(gl_repo)
                labels = [
                    GitLabLabel.model_validate(data)
                    for data in await ctx.transport.fetch_all(f"/projects/{gl_repo.id}/labels")
                ]
                repo = _find_existing_repo(server, repos, gl_repo)
                repo_after = self.copy_repo_properties(repo, gl_repo, members, labels)
                saved = await ctx.repos.save_if_changed(repo, repo_after)
                repos_after.append(saved or repo_after)
                if saved is not None:
                    previous_ids = repo["user_ids"] if repo else []
                    newcomers = [
                        member["id"]
                        for member in members
                        if member["username"] != "root"
                        and not member["disabled"]
                        and not member["deleted"]
                        and member["id"] not in previous_ids
                    ]
                    if newcomers:
                        for project in await ctx.projects.get_by_repo(saved["id"]):
                            await ctx.projects.add_members(project, newcomers)
                    task_log.append("modified" if repo else "added", gl_repo.name)
                await task_log.report(index + 1, len(gl_repos))
            await task_log.finish()
        except Exception as e:
            await task_log.abort(e)
            raise
        return repos_after

    async def _import_members(self, gl_repo: GitLabProject) -> list[Document]:
        gl_members = [
            GitLabMember.model_validate(data)
            for data in await self._ctx.transport.fetch_all(f"/projects/{gl_repo.id}/members")
        ]
        gl_users: list[GitLabUser] = list(gl_members)
        if gl_repo.creator_id is not None and all(m.id != gl_repo.creator_id for m in gl_members):
            # the owner is not always listed as a member
            gl_users.append(GitLabUser(id=gl_repo.creator_id, username=""))

        members: list[Document] = []
        for gl_user in gl_users:
            member = await self._users.import_user(gl_user)
            if member is not None and all(member["id"] != m["id"] for m in members):
                members.append(member)
        return members

    def copy_repo_properties(
        self,
        repo: Document | None,
        gl_repo: GitLabProject,
        members: list[Document],
        labels: list[GitLabLabel],
    ) -> Document:
        """Build the repo document for a GitLab project."""
        server = self._ctx.server
        repo_after = copy.deepcopy(repo) if repo else {"details": {}}
        add_link(repo_after, server, project={"id": gl_repo.id})
        for path, value in (
            ("type", "gitlab"),
            ("name", gl_repo.name),
            ("user_ids", [member["id"] for member in members]),
            ("details.web_url", gl_repo.web_url),
            ("details.issues_enabled", gl_repo.issues_enabled),
            ("details.archived", gl_repo.archived),
            ("details.default_branch", gl_repo.default_branch),
            ("details.labels", [label.name for label in labels]),
            ("details.label_colors", [label.color for label in labels]),
        ):
            import_property(repo_after, server, path, value=value, overwrite="always")
        repo_after["deleted"] = False
        return repo_after

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------
    async def process_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
    ) -> ImportResult:
        """Record a created/imported/deleted event as a ``repo`` story.

        A replayed event (same repo, time and action) finds the story it
        created before, so nothing is written twice.
        """
        ctx = self._ctx
        server = ctx.server
        action = event.action_name.strip().lower()
        repo_link = find_link(repo, server) or {}
        probe = create_link(server, project=repo_link.get("project"))
        candidates = await ctx.stories.find(
            {"project_id": project.id, "type": StoryType.REPO.value}, link=probe
        )
        story = next(
            (
                candidate
                for candidate in candidates
                if candidate["ptime"] == event.created_at
                and candidate["details"].get("action") == action
            ),
            None,
        )

        story_after = copy.deepcopy(story) if story else {"project_id": project.id}
        inherit_link(story_after, server, repo)
        for path, value in (
            ("type", StoryType.REPO.value),
            ("language_codes", [ctx.language_code]),
            ("user_ids", [author["id"]]),
            ("role_ids", author.get("role_ids") or []),
            ("details.action", action),
            ("public", True),
            ("published", True),
            ("ptime", event.created_at),
        ):
            import_property(story_after, server, path, value=value, overwrite="always")
        saved = await ctx.stories.save_if_changed(story, story_after)
        return ImportResult.from_saved("story", story, saved)


def _find_existing_repo(server, repos: list[Document], gl_repo: GitLabProject) -> Document | None:
    for repo in repos:
        if find_link(repo, server, {"project": {"id": gl_repo.id}}) is not None:
            return repo
    return None
