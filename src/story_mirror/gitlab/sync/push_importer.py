"""Push importer: push and ref-deletion events to stories."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from story_mirror.db.models import Project
from story_mirror.external import Document, find_link, import_property, inherit_link
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabEvent, StoryType

from .context import ImportContext
from .push_decorator import PushDecorator
from .push_reconstructor import NULL_SHA, Push, PushReconstructor
from .results import ImportResult

logger = get_logger(__name__)

_PUSH_TYPES = [
    StoryType.PUSH.value,
    StoryType.MERGE.value,
    StoryType.BRANCH.value,
    StoryType.TAG.value,
]


@dataclass
class PushInfo:
    """Ref and commit range of a push event, from either payload format."""

    ref_type: str
    branch: str
    head_id: str | None
    tail_id: str | None
    count: int
    created_ref: bool


def read_push_info(event: GitLabEvent) -> PushInfo | None:
    """Read ``push_data``, or the ``data`` object of older GitLab releases.

    Returns:
        The push info, or None if the event carries neither
    """
    if event.push_data is not None:
        data = event.push_data
        tail_id = data.commit_from if data.commit_from and data.commit_from != NULL_SHA else None
        head_id = data.commit_to if data.commit_to and data.commit_to != NULL_SHA else None
        return PushInfo(
            ref_type=data.ref_type,
            branch=data.ref or "",
            head_id=head_id,
            tail_id=tail_id,
            count=data.commit_count,
            created_ref=data.action == "created",
        )
    if event.data:
        data_v9: dict[str, Any] = event.data
        ref_parts = (data_v9.get("ref") or "").split("/")
        tail_id = data_v9.get("before")
        if not tail_id or not tail_id.strip("0"):
            tail_id = None
        head_id = data_v9.get("after")
        if not head_id or not head_id.strip("0"):
            head_id = None
        branch = ref_parts[-1]
        default_branch = (data_v9.get("project") or {}).get("default_branch")
        return PushInfo(
            ref_type="tag" if len(ref_parts) > 1 and ref_parts[1] == "tags" else "branch",
            branch=branch,
            head_id=head_id,
            tail_id=tail_id,
            count=data_v9.get("total_commits_count") or 0,
            created_ref=tail_id is None and default_branch != branch,
        )
    return None


class PushImporter:
    """Turns push events into push, merge, branch or tag stories.

    Usage:
        importer = PushImporter(ctx)
        result = await importer.process_event(repo, project, author, event)
    """

    def __init__(
        self,
        ctx: ImportContext,
        reconstructor: PushReconstructor | None = None,
        decorator: PushDecorator | None = None,
    ) -> None:
        self._ctx = ctx
        self._reconstructor = reconstructor or PushReconstructor(ctx)
        self._decorator = decorator or PushDecorator(ctx)

    async def process_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
    ) -> ImportResult:
        """Reconstruct and record a push."""
        info = read_push_info(event)
        if info is None or info.head_id is None:
            return ImportResult.skipped("story", "push event without a head commit")

        push = await self._reconstructor.reconstruct_push(
            repo, info.ref_type, info.branch, info.head_id, info.tail_id, info.count
        )
        components = await self._decorator.retrieve_descriptions(repo, push)
        story = await self._find_push_story(repo, project, push)
        story_after = self.copy_push_properties(story, repo, project, author, push, components, info, event)
        saved = await self._ctx.stories.save_if_changed(story, story_after)
        return ImportResult.from_saved("story", story, saved)

    async def process_deletion(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
    ) -> ImportResult:
        """Record the deletion of a branch or tag."""
        ctx = self._ctx
        server = ctx.server
        info = read_push_info(event)
        if info is None:
            return ImportResult.skipped("story", "ref deletion without push data")

        story_type = StoryType.TAG.value if info.ref_type == "tag" else StoryType.BRANCH.value
        candidates = await ctx.stories.find(
            {"project_id": project.id, "type": story_type},
            link=_repo_probe(server, repo),
        )
        story = next(
            (
                candidate
                for candidate in candidates
                if candidate["ptime"] == event.created_at
                and candidate["details"].get("action") == "deleted"
                and candidate["details"].get("branch") == info.branch
            ),
            None,
        )
        story_after = copy.deepcopy(story) if story else {"project_id": project.id}
        inherit_link(story_after, server, repo)
        for path, value in (
            ("type", story_type),
            ("language_codes", [ctx.language_code]),
            ("user_ids", [author["id"]]),
            ("role_ids", author.get("role_ids") or []),
            ("details.action", "deleted"),
            ("details.branch", info.branch),
            ("details.commit_before", info.tail_id),
            ("public", True),
            ("published", True),
            ("ptime", event.created_at),
        ):
            import_property(story_after, server, path, value=value, overwrite="always")
        saved = await ctx.stories.save_if_changed(story, story_after)
        return ImportResult.from_saved("story", story, saved)

    async def _find_push_story(
        self, repo: Document, project: Project, push: Push
    ) -> Document | None:
        server = self._ctx.server
        probe = _repo_probe(server, repo)
        probe["commit"] = {"ids": push.commit_ids}
        candidates = await self._ctx.stories.find(
            {"project_id": project.id, "type": _PUSH_TYPES}, link=probe
        )
        for candidate in candidates:
            link = find_link(candidate, server) or {}
            if (
                link.get("commit", {}).get("ids") == push.commit_ids
                and candidate["details"].get("commit_after") == push.head_id
            ):
                return candidate
        return None

    def copy_push_properties(
        self,
        story: Document | None,
        repo: Document,
        project: Project,
        author: Document,
        push: Push,
        components: list[dict[str, Any]],
        info: PushInfo,
        event: GitLabEvent,
    ) -> Document:
        """Build the story of a push.

        A push creating a ref is a ``branch`` (or ``tag``) story, a push whose
        commits were first pushed elsewhere is a ``merge``, anything else a
        ``push``.
        """
        ctx = self._ctx
        server = ctx.server
        if push.tail_id is None and info.created_ref:
            story_type = StoryType.TAG.value if push.type == "tag" else StoryType.BRANCH.value
        elif push.from_branches:
            story_type = StoryType.MERGE.value
        else:
            story_type = StoryType.PUSH.value

        lines = {name: count for name, count in push.lines.to_dict().items() if count}
        files = {name: len(paths) for name, paths in push.files.to_dict().items() if paths}

        story_after = copy.deepcopy(story) if story else {"project_id": project.id}
        inherit_link(story_after, server, repo, commit={"ids": list(push.commit_ids)})
        for path, value in (
            ("type", story_type),
            ("language_codes", [ctx.language_code]),
            ("user_ids", [author["id"]]),
            ("role_ids", author.get("role_ids") or []),
            ("details.commit_before", push.tail_id),
            ("details.commit_after", push.head_id),
            ("details.lines", lines),
            ("details.files", files),
            ("details.components", components),
            ("details.branch", push.branch),
            ("details.from_branches", push.from_branches or None),
            ("public", True),
            ("published", True),
            ("ptime", event.created_at),
        ):
            import_property(story_after, server, path, value=value, overwrite="always")
        return story_after


def _repo_probe(server, repo: Document) -> Document:
    link = find_link(repo, server) or {}
    return {"server_id": server.id, "project": link.get("project")}
