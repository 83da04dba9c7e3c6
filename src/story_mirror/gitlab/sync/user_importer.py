"""User importer: GitLab accounts to internal users, member events to stories.

Users are global (not per project). A GitLab account is matched to an
existing user by link first, then by username for ``root``, then by email.
Profile fields use match-previous so that edits made to the internal user
survive later imports.
"""

from __future__ import annotations

import copy

from story_mirror.db.models import Project
from story_mirror.external import (
    Document,
    add_link,
    count_links,
    create_link,
    find_link,
    import_property,
    import_resource,
    inherit_link,
    remove_link,
)
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabEvent, GitLabUser, StoryType, UserType

from .context import ImportContext
from .enums import TaskAction
from .results import ImportResult
from .task_log import TaskLog

logger = get_logger(__name__)


class UserImporter:
    """Imports GitLab users and member (joined/left) events.

    Usage:
        importer = UserImporter(ctx)
        users = await importer.import_users()
        author = await importer.import_user(event.author)
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx

    # -------------------------------------------------------------------------
    # Full import
    # -------------------------------------------------------------------------
    async def import_users(self) -> list[Document]:
        """Import every account of the server.

        Users linked to accounts that no longer exist lose that link, and are
        disabled when no other server links them.

        Returns:
            The imported users as stored
        """
        ctx = self._ctx
        server = ctx.server
        task_log = await TaskLog.start(ctx.task_logs, TaskAction.USER_IMPORT, server_id=server.id)
        try:
            users = await ctx.users.find_by_link(create_link(server))
            gl_users = [
                GitLabUser.model_validate(data) for data in await ctx.transport.fetch_all("/users")
            ]

            gl_user_ids = {gl_user.id for gl_user in gl_users}
            for user in users:
                link = find_link(user, server)
                if link is None or link.get("user", {}).get("id") in gl_user_ids:
                    continue
                user_after = copy.deepcopy(user)
                remove_link(user_after, server)
                if count_links(user_after) == 0:
                    user_after["disabled"] = True
                await ctx.users.update_one(user_after)
                if user_after["disabled"]:
                    task_log.append("disabled", user["username"])
                    logger.info("Disabled user {} (gone from {})", user["username"], server.name)

            users_after: list[Document] = []
            for index, gl_user in enumerate(gl_users):
                user = await self._find_existing_user(users, gl_user)
                user_after = self.copy_user_properties(user, gl_user)
                saved = await ctx.users.save_if_changed(user, user_after)
                users_after.append(saved or user_after)
                if saved is not None:
                    task_log.append("modified" if user else "added", gl_user.username)
                await task_log.report(index + 1, len(gl_users))
            await task_log.finish()
        except Exception as e:
            await task_log.abort(e)
            raise
        return users_after

    async def _find_existing_user(
        self, users: list[Document], gl_user: GitLabUser
    ) -> Document | None:
        server = self._ctx.server
        for user in users:
            if find_link(user, server, {"user": {"id": gl_user.id}}) is not None:
                return user
        if gl_user.username == "root":
            user = await self._ctx.users.find_by_username(gl_user.username)
            if user is not None:
                return user
        if gl_user.email:
            return await self._ctx.users.find_by_email(gl_user.email)
        return None

    def copy_user_properties(self, user: Document | None, gl_user: GitLabUser) -> Document:
        """Build the user document for a GitLab account.

        The user type comes from the server's ``settings.user.mapping``; an
        account whose kind is not mapped is imported as a disabled guest.
        """
        server = self._ctx.server
        user_settings = (server.settings or {}).get("user", {})
        mapping = user_settings.get("mapping", {})
        if gl_user.is_admin:
            user_type = mapping.get("admin")
        elif gl_user.external:
            user_type = mapping.get("external_user")
        else:
            user_type = mapping.get("user")
        disabled = False
        if not user_type:
            user_type = UserType.GUEST.value
            disabled = True

        user_after = copy.deepcopy(user) if user else {
            "role_ids": list(user_settings.get("role_ids", [])),
            "details": {},
        }
        # the account id is the identity; the username can change on GitLab
        link = add_link(user_after, server, user={"id": gl_user.id})
        link["user"]["username"] = gl_user.username
        for path, value in (
            ("disabled", disabled),
            ("type", user_type),
            ("username", gl_user.username),
            ("details.name", gl_user.name),
            ("details.email", gl_user.email),
            ("details.gitlab_url", gl_user.web_url),
            ("details.skype_username", gl_user.skype),
            ("details.twitter_username", gl_user.twitter),
            ("details.linkedin_username", gl_user.linkedin),
        ):
            key = path.rsplit(".", 1)[-1]
            import_property(user_after, server, path, value=value, overwrite=f"match-previous:{key}")
        image = {"type": "image", "url": gl_user.avatar_url} if gl_user.avatar_url else None
        import_resource(user_after, server, type="image", value=image, replace="match-previous")
        return user_after

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------
    async def import_user(self, gl_user: GitLabUser | None) -> Document | None:
        """Resolve a GitLab account to an internal user, importing if needed.

        Accounts known only by username (some webhook payloads) are looked up
        by name, then fetched to learn their id. An account not yet imported
        triggers a full ``import_users`` pass.

        Returns:
            The user, or None if the account cannot be resolved
        """
        if gl_user is None:
            return None
        ctx = self._ctx
        server = ctx.server
        if gl_user.id is None:
            user = await self.find_user_by_name(gl_user.username)
            if user is not None:
                return user
            found = await ctx.transport.fetch("/users", {"username": gl_user.username})
            if not found:
                return None
            gl_user = GitLabUser.model_validate(found[0])

        probe = create_link(server, user={"id": gl_user.id})
        user = await ctx.users.find_one_by_link(probe)
        if user is None:
            for candidate in await self.import_users():
                if find_link(candidate, server, {"user": {"id": gl_user.id}}) is not None:
                    user = candidate
                    break
        return user

    async def find_users_by_name(self, usernames: list[str]) -> list[Document | None]:
        """Find users by GitLab username, in the order given.

        Only the username recorded in each user's link is consulted, since
        that is what GitLab system notes refer to.
        """
        server = self._ctx.server
        users = await self._ctx.users.find_by_link(create_link(server))
        by_name: dict[str, Document] = {}
        for user in users:
            link = find_link(user, server)
            username = (link or {}).get("user", {}).get("username")
            if username and username not in by_name:
                by_name[username] = user
        return [by_name.get(username) for username in usernames]

    async def find_user_by_name(self, username: str) -> Document | None:
        """Find one user by GitLab username."""
        (user,) = await self.find_users_by_name([username])
        return user

    # -------------------------------------------------------------------------
    # Member events
    # -------------------------------------------------------------------------
    async def process_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
    ) -> ImportResult:
        """Record a joined/left event as a ``member`` story and update the project."""
        ctx = self._ctx
        server = ctx.server
        action = event.action_name.strip().lower()
        criteria = {"project_id": project.id, "type": StoryType.MEMBER.value}
        candidates = await ctx.stories.find(criteria, link=_member_probe(server, repo, event))
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
        inherit_link(story_after, server, repo, user={"id": event.author_id})
        for path, value in (
            ("type", StoryType.MEMBER.value),
            ("language_codes", [ctx.language_code]),
            ("user_ids", [author["id"]]),
            ("role_ids", author.get("role_ids") or []),
            ("details.action", action),
            ("published", True),
            ("public", True),
            ("ptime", event.created_at),
        ):
            import_property(story_after, server, path, value=value, overwrite="always")
        saved = await ctx.stories.save_if_changed(story, story_after)
        result = ImportResult.from_saved("story", story, saved)

        if action == "joined":
            await ctx.projects.add_members(project, [author["id"]])
        elif action == "left":
            await ctx.projects.remove_members(project, [author["id"]])
        return result


def _member_probe(server, repo: Document, event: GitLabEvent) -> Document:
    repo_link = find_link(repo, server) or {}
    return create_link(server, project=repo_link.get("project"), user={"id": event.author_id})
