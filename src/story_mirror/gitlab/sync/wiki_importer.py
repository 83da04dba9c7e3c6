"""Wiki importer: ``wiki_page`` webhooks to ``wiki`` stories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from story_mirror.db.models import Project
from story_mirror.external import Document, extend_link, import_property, inherit_link
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabHookEvent, StoryType

from .context import ImportContext
from .enums import ImportAction
from .results import ImportResult

logger = get_logger(__name__)

# one story a day about a page is enough
RECENT_STORY_WINDOW = timedelta(days=1)


class WikiImporter:
    """Turns wiki page webhooks into stories.

    Edits of a page within a day of its last story are folded into that
    story; deleting the page removes it.

    Usage:
        importer = WikiImporter(ctx)
        result = await importer.process_hook_event(repo, project, author, hook)
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx

    async def process_hook_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        hook: GitLabHookEvent,
    ) -> ImportResult:
        """Import a wiki page hook.

        Returns:
            CREATED for a new story, DELETED when a recent story of a
            deleted page was removed, UNCHANGED when a recent story already
            covers the page
        """
        ctx = self._ctx
        attributes = hook.object_attributes
        slug = attributes.get("slug")
        if not slug:
            return ImportResult.skipped("story", "wiki hook without slug")

        now = datetime.now(UTC)
        stories = await ctx.stories.find(
            {"project_id": project.id, "type": StoryType.WIKI.value, "deleted": False},
            link=extend_link(ctx.server, repo, wiki={"id": slug}),
        )
        recent = next(
            (
                story
                for story in reversed(stories)
                if story.get("ptime") is not None and story["ptime"] >= now - RECENT_STORY_WINDOW
            ),
            None,
        )
        if recent is not None:
            if hook.action == "delete":
                saved = await ctx.stories.update_one({**recent, "deleted": True})
                logger.debug("Removed story #{} of deleted wiki page {}", recent["id"], slug)
                return ImportResult("story", ImportAction.DELETED, document=saved)
            return ImportResult("story", ImportAction.UNCHANGED, document=recent)

        story_after = self.copy_event_properties(repo, project, author, hook, now)
        saved = await ctx.stories.save_if_changed(None, story_after)
        return ImportResult.from_saved("story", None, saved)

    def copy_event_properties(
        self,
        repo: Document,
        project: Project,
        author: Document,
        hook: GitLabHookEvent,
        ptime: datetime,
    ) -> Document:
        """Build the story of a wiki page change."""
        ctx = self._ctx
        server = ctx.server
        attributes = hook.object_attributes
        story_after: Document = {"project_id": project.id, "details": {}}
        inherit_link(story_after, server, repo, wiki={"id": attributes["slug"]})
        fields: list[tuple[str, object]] = [
            ("type", StoryType.WIKI.value),
            ("language_codes", [ctx.language_code]),
            ("user_ids", [author["id"]]),
            ("role_ids", author.get("role_ids") or []),
            ("details.url", attributes.get("url")),
            ("details.title", attributes.get("title")),
            ("details.action", hook.action),
            ("details.slug", attributes["slug"]),
            ("public", True),
            ("published", True),
            ("ptime", ptime),
        ]
        for path, value in fields:
            import_property(story_after, server, path, value=value, overwrite="always")
        return story_after
