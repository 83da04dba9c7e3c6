"""Note importer: comments on issues, merge requests and commits to reactions."""

from __future__ import annotations

import copy

from story_mirror.db.models import Project
from story_mirror.external import (
    Document,
    extend_link,
    find_link,
    import_property,
    inherit_link,
)
from story_mirror.external.text import title_hash
from story_mirror.logging import get_logger
from story_mirror.schemas import (
    GitLabCommitComment,
    GitLabEvent,
    GitLabHookEvent,
    GitLabNote,
    ReactionType,
)

from .context import ImportContext
from .results import ImportResult

logger = get_logger(__name__)


class NoteImporter:
    """Attaches ``note`` reactions to the stories comments were made on.

    Usage:
        importer = NoteImporter(ctx)
        result = await importer.process_event(repo, project, author, event, hook)
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx

    async def process_event(
        self,
        repo: Document,
        project: Project,
        author: Document,
        event: GitLabEvent,
        hook: GitLabHookEvent | None = None,
    ) -> ImportResult:
        """Import a ``commented on`` activity-log entry.

        Args:
            repo: Repo the event belongs to
            project: Project being imported into
            author: Internal user who wrote the note
            event: Activity-log entry
            hook: Webhook that triggered the run, if any (carries commit ids)
        """
        note = event.note
        if note is None:
            return ImportResult.skipped("reaction", "event has no note")
        ctx = self._ctx
        noteable_type = (note.noteable_type or "").strip().lower()
        if noteable_type == "issue":
            probe = extend_link(ctx.server, repo, issue={"id": note.noteable_id})
        elif noteable_type in ("mergerequest", "merge_request"):
            probe = extend_link(ctx.server, repo, merge_request={"id": note.noteable_id})
        elif noteable_type == "commit":
            commit_id = await self.find_commit_id(repo, event, note, hook)
            if commit_id is None:
                logger.info("Cannot tell which commit note {} was made on", note.id)
                return ImportResult.skipped("reaction", "commit not found")
            probe = extend_link(ctx.server, repo, commit={"ids": [commit_id]})
        else:
            return ImportResult.skipped("reaction", f"notes on {noteable_type!r} not imported")

        story = await ctx.stories.find_one_by_link(probe, {"project_id": project.id})
        if story is None:
            return ImportResult.skipped("reaction", "story of the commented object not found")
        return await self.import_note(story, author, event, note)

    async def import_note(
        self, story: Document, author: Document, event: GitLabEvent, note: GitLabNote
    ) -> ImportResult:
        """Insert the note reaction unless it was imported before."""
        ctx = self._ctx
        probe = extend_link(ctx.server, story, note={"id": note.id})
        reaction = await ctx.reactions.find_one_by_link(
            probe, {"story_id": story["id"], "type": ReactionType.NOTE.value}
        )
        reaction_after = self.copy_note_properties(reaction, story, author, event, note)
        saved = await ctx.reactions.save_if_changed(reaction, reaction_after)
        return ImportResult.from_saved("reaction", reaction, saved)

    async def find_commit_id(
        self,
        repo: Document,
        event: GitLabEvent,
        note: GitLabNote,
        hook: GitLabHookEvent | None,
    ) -> str | None:
        """Find the commit a note was made on.

        The activity log does not say. A note webhook does; otherwise the
        candidates are the commits whose title matches the event's target,
        and the first whose remote comments include the note's exact text
        wins.
        """
        if hook is not None and hook.object_attributes.get("id") == note.id:
            return hook.object_attributes.get("commit_id")

        ctx = self._ctx
        server = ctx.server
        commits = await ctx.commits.find(
            {"title_hash": title_hash(event.target_title)},
            link=extend_link(server, repo),
        )
        for commit in commits:
            link = find_link(commit, server)
            if link is None:
                continue
            sha = link["commit"]["id"]
            comments = [
                GitLabCommitComment.model_validate(data)
                for data in await ctx.transport.fetch_all(
                    f"/projects/{link['project']['id']}/repository/commits/{sha}/comments"
                )
            ]
            if any(comment.note == note.body for comment in comments):
                return sha
        return None

    def copy_note_properties(
        self,
        reaction: Document | None,
        story: Document,
        author: Document,
        event: GitLabEvent,
        note: GitLabNote,
    ) -> Document:
        """Build the note reaction document."""
        server = self._ctx.server
        reaction_after = copy.deepcopy(reaction) if reaction else {}
        inherit_link(reaction_after, server, story, note={"id": note.id})
        for path, value in (
            ("type", ReactionType.NOTE.value),
            ("project_id", story["project_id"]),
            ("story_id", story["id"]),
            ("user_id", author["id"]),
            ("public", True),
            ("published", True),
            ("ptime", note.created_at or event.created_at),
        ):
            import_property(reaction_after, server, path, value=value, overwrite="always")
        return reaction_after
