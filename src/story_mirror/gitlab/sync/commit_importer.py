"""Commit importer: fetches commits and their diffs during push reconstruction.

A commit is stored once, the first time a push containing it is seen;
``initial_branch`` records the branch it was pushed to then, which is how
merges are told apart from direct pushes later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from story_mirror.external import (
    Document,
    extend_link,
    fingerprint,
    import_property,
    inherit_link,
)
from story_mirror.external.text import title_hash
from story_mirror.logging import get_logger
from story_mirror.schemas import GitLabCommit, GitLabDiff

from .context import ImportContext

logger = get_logger(__name__)


@dataclass
class LineChanges:
    """Lines added, deleted and modified by a commit (or a whole push)."""

    added: int = 0
    deleted: int = 0
    modified: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "deleted": self.deleted, "modified": self.modified}


@dataclass
class FileChanges:
    """Paths added, deleted, modified and renamed by a commit (or a push)."""

    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    renamed: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "deleted": list(self.deleted),
            "modified": list(self.modified),
            "renamed": [dict(rename) for rename in self.renamed],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FileChanges:
        data = data or {}
        return cls(
            added=list(data.get("added", [])),
            deleted=list(data.get("deleted", [])),
            modified=list(data.get("modified", [])),
            renamed=[dict(rename) for rename in data.get("renamed", [])],
        )


class CommitImporter:
    """Imports single commits of a repo.

    Usage:
        importer = CommitImporter(ctx)
        commit = await importer.import_commit(repo, "main", sha)
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx

    async def import_commit(self, repo: Document, branch: str, sha: str) -> Document:
        """Return the stored commit, fetching and inserting it if new.

        Args:
            repo: Repo the commit belongs to
            branch: Branch the commit is being imported for
            sha: Full commit SHA

        Returns:
            The commit document
        """
        ctx = self._ctx
        server = ctx.server
        probe = extend_link(server, repo, commit={"id": sha})
        commit = await ctx.commits.find_one_by_link(probe)
        if commit is not None:
            return commit

        project_id = probe["project"]["id"]
        gl_commit = GitLabCommit.model_validate(
            await ctx.transport.fetch(f"/projects/{project_id}/repository/commits/{sha}")
        )
        gl_diff = [
            GitLabDiff.model_validate(data)
            for data in await ctx.transport.fetch(
                f"/projects/{project_id}/repository/commits/{gl_commit.id}/diff"
            )
            or []
        ]
        commit_after = self.copy_commit_properties(repo, branch, gl_commit, gl_diff)
        commit_after["itime"] = datetime.now(UTC)
        saved = await ctx.commits.insert_one(commit_after)
        logger.debug("Imported commit {} on {}", sha[:8], branch)
        return saved

    def copy_commit_properties(
        self,
        repo: Document,
        branch: str,
        gl_commit: GitLabCommit,
        gl_diff: list[GitLabDiff],
    ) -> Document:
        """Build the commit document from the commit and its diff."""
        server = self._ctx.server
        lines, files = count_changes(gl_diff)
        commit_after: Document = {"details": {}}
        link = inherit_link(
            commit_after,
            server,
            repo,
            commit={"id": gl_commit.id, "parent_ids": list(gl_commit.parent_ids)},
        )
        commit_after["external_key"] = fingerprint(link, "project", "commit")
        for path, value in (
            ("initial_branch", branch),
            ("title_hash", title_hash(gl_commit.title)),
            ("details.status", gl_commit.status),
            ("details.author_name", gl_commit.author_name),
            ("details.author_email", gl_commit.author_email),
            ("details.lines", lines.to_dict()),
            ("details.files", files.to_dict()),
            ("ptime", gl_commit.committed_date or gl_commit.created_at),
        ):
            import_property(commit_after, server, path, value=value, overwrite="always")
        return commit_after


# -----------------------------------------------------------------------------
# Diff counting
# -----------------------------------------------------------------------------
def parse_hunk_lines(diff: str) -> list[str]:
    """Return the change markers (``+``, ``-``, `` ``) of a unified diff's hunks.

    Everything before the first ``@@`` (file headers, which GitLab usually
    omits) and ``\\ No newline at end of file`` markers are skipped.
    """
    markers: list[str] = []
    in_hunk = False
    for line in diff.splitlines():
        if line.startswith("@@"):
            in_hunk = True
            continue
        if not in_hunk or line.startswith("\\"):
            continue
        marker = line[:1] or " "
        if marker in "+- ":
            markers.append(marker)
    return markers


def count_line_changes(markers: list[str]) -> LineChanges:
    """Count lines in a file diff.

    When a file has both additions and deletions, an added line following a
    run of deleted lines counts as a modification of one of them.
    """
    additions = markers.count("+")
    deletions = markers.count("-")
    changes = LineChanges()
    if additions and deletions:
        pending = 0
        for marker in markers:
            if marker == "-":
                changes.deleted += 1
                pending += 1
            elif marker == "+":
                if pending:
                    changes.deleted -= 1
                    changes.modified += 1
                    pending -= 1
                else:
                    changes.added += 1
            else:
                pending = 0
    else:
        changes.added = additions
        changes.deleted = deletions
    return changes


def count_changes(gl_diff: list[GitLabDiff]) -> tuple[LineChanges, FileChanges]:
    """Count line and file changes over every file of a commit diff."""
    lines = LineChanges()
    files = FileChanges()
    for file in gl_diff:
        markers = parse_hunk_lines(file.diff) if file.diff else []
        if file.new_file:
            files.added.append(file.new_path)
        elif file.deleted_file:
            files.deleted.append(file.old_path)
        else:
            if file.renamed_file:
                files.renamed.append({"before": file.old_path, "after": file.new_path})
            if "+" in markers or "-" in markers:
                files.modified.append(file.new_path)

        file_lines = count_line_changes(markers)
        lines.added += file_lines.added
        lines.deleted += file_lines.deleted
        lines.modified += file_lines.modified
    return lines, files
