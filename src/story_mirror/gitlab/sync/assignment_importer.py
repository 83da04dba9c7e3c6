"""Assignment importer: who an issue or merge request was assigned to, and when.

GitLab does not keep an assignment history. It is recovered from the
system notes GitLab writes on every change (``assigned to @alice``); the
current assignees are used when there are no such notes.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from datetime import datetime

from story_mirror.external import Document, ObjectMovedError, import_property, inherit_link
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabIssue, GitLabNote, ReactionType

from .context import ImportContext
from .results import ImportResult
from .user_importer import UserImporter

logger = get_logger(__name__)

_ASSIGNED = re.compile(r"^assigned to @(\S+)")
_UNASSIGNED = re.compile(r"unassigned @(\S+)")
_MOVED = re.compile(r"^moved to")


@dataclass
class Assignment:
    """One assignment recovered from GitLab."""

    username: str
    ctime: datetime
    note_id: int | None = None
    user: Document | None = None


class AssignmentImporter:
    """Finds assignments and records them as ``assignment`` reactions.

    Usage:
        importer = AssignmentImporter(ctx)
        assignments = await importer.find_assignments(gl_issue, "issues")
        results = await importer.import_assignments(story, assignments)
    """

    def __init__(self, ctx: ImportContext, users: UserImporter | None = None) -> None:
        self._ctx = ctx
        self._users = users or UserImporter(ctx)

    async def find_assignments(
        self, gl_object: GitLabIssue, collection: str = "issues"
    ) -> list[Assignment]:
        """Recover the assignments of an issue (or a merge request).

        Args:
            gl_object: Issue or merge request, with ``project_id`` and ``iid``
            collection: ``issues`` or ``merge_requests``

        Returns:
            Assignments whose user is known, oldest first

        Raises:
            ObjectMovedError: If a system note says the object was moved
        """
        notes = [
            GitLabNote.model_validate(data)
            for data in await self._ctx.transport.fetch_all(
                f"/projects/{gl_object.project_id}/{collection}/{gl_object.iid}/notes",
                {"sort": "asc", "order_by": "created_at"},
            )
        ]
        return await self.find_assignments_from_notes(gl_object, notes)

    async def find_assignments_from_notes(
        self, gl_object: GitLabIssue, notes: list[GitLabNote]
    ) -> list[Assignment]:
        """Recover assignments from an object's notes (see ``find_assignments``)."""
        assignments: list[Assignment] = []
        for note in notes:
            if not note.system:
                continue
            assigned = _ASSIGNED.match(note.body)
            if assigned:
                if not assignments:
                    unassigned = _UNASSIGNED.search(note.body)
                    if unassigned:
                        # created with an assignee, then reassigned
                        assignments.append(
                            Assignment(unassigned.group(1), gl_object.created_at)
                        )
                assignments.append(
                    Assignment(assigned.group(1), note.created_at or gl_object.created_at, note.id)
                )
            if _MOVED.match(note.body):
                raise ObjectMovedError(f"{gl_object.web_url or gl_object.iid} was moved")

        if not assignments:
            # created with an assignee and never reassigned: no notes
            assignees = gl_object.assignees
            if not assignees and gl_object.assignee is not None:
                assignees = [gl_object.assignee]
            for assignee in assignees or []:
                assignments.append(Assignment(assignee.username, gl_object.created_at))

        usernames = list(dict.fromkeys(assignment.username for assignment in assignments))
        users = await self._users.find_users_by_name(usernames)
        by_name = dict(zip(usernames, users, strict=True))
        for assignment in assignments:
            assignment.user = by_name[assignment.username]
        dropped = [assignment.username for assignment in assignments if assignment.user is None]
        if dropped:
            logger.debug("Dropping assignments to unknown users: {}", ", ".join(dropped))
        return [assignment for assignment in assignments if assignment.user is not None]

    async def import_assignments(
        self, story: Document, assignments: list[Assignment]
    ) -> list[ImportResult]:
        """Add an assignment reaction for each user not already assigned."""
        ctx = self._ctx
        existing = await ctx.reactions.find_by_story(story["id"], ReactionType.ASSIGNMENT.value)
        assigned_ids = {reaction["user_id"] for reaction in existing}
        results: list[ImportResult] = []
        for assignment in assignments:
            user = assignment.user
            if user is None or user["id"] in assigned_ids:
                continue
            reaction_after = self.copy_assignment_properties(None, story, assignment, user)
            saved = await ctx.reactions.save_if_changed(None, reaction_after)
            assigned_ids.add(user["id"])
            results.append(ImportResult.from_saved("reaction", None, saved))
        return results

    def copy_assignment_properties(
        self, reaction: Document | None, story: Document, assignment: Assignment, user: Document
    ) -> Document:
        """Build the assignment reaction document."""
        server = self._ctx.server
        reaction_after = copy.deepcopy(reaction) if reaction else {}
        inherit_link(reaction_after, server, story, note={"id": assignment.note_id})
        for path, value in (
            ("type", ReactionType.ASSIGNMENT.value),
            ("project_id", story["project_id"]),
            ("story_id", story["id"]),
            ("user_id", user["id"]),
            ("public", True),
            ("published", True),
            ("ptime", assignment.ctime),
        ):
            import_property(reaction_after, server, path, value=value, overwrite="always")
        return reaction_after
