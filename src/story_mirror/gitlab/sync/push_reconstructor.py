"""Push reconstruction: what a push changed, from the commits it brought in.

GitLab's activity log only reports the head and tail of a push. The commits
in between are found by walking parent ids back from the head until the
tail (or a root) is reached; their recorded changes are then folded along
the first-pushed chain into one summary.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from story_mirror.external import Document, find_link
from story_mirror.logging import get_logger

from .commit_importer import CommitImporter, FileChanges, LineChanges
from .context import ImportContext
from .enums import TaskAction
from .task_log import TaskLog

logger = get_logger(__name__)

# commit_from of a push that created its branch
NULL_SHA = "0" * 40


@dataclass
class Push:
    """Summary of one push."""

    head_id: str
    tail_id: str | None
    type: str
    branch: str
    commit_ids: list[str] = field(default_factory=list)
    lines: LineChanges = field(default_factory=LineChanges)
    files: FileChanges = field(default_factory=FileChanges)
    from_branches: list[str] = field(default_factory=list)


class PushReconstructor:
    """Imports the commits of a push and summarizes their changes.

    Usage:
        reconstructor = PushReconstructor(ctx)
        push = await reconstructor.reconstruct_push(repo, "push", "main", head, tail, 3)
    """

    def __init__(self, ctx: ImportContext, commits: CommitImporter | None = None) -> None:
        self._ctx = ctx
        self._commits = commits or CommitImporter(ctx)

    async def reconstruct_push(
        self,
        repo: Document,
        type: str,
        branch: str,
        head_id: str,
        tail_id: str | None,
        count: int,
    ) -> Push:
        """Reconstruct a push from its head and tail.

        Args:
            repo: Repo pushed to
            type: ``push``, ``branch`` or ``tag``
            branch: Branch (or tag) name
            head_id: SHA of the new head
            tail_id: SHA of the previous head (None for a new ref)
            count: Number of commits GitLab reported, used for progress only
        """
        if tail_id == NULL_SHA:
            tail_id = None
        commits = await self.import_commits(repo, branch, head_id, tail_id, count)
        chain = get_commit_chain(self._ctx.server, commits, head_id, tail_id, branch)
        return Push(
            head_id=head_id,
            tail_id=tail_id,
            type=type,
            branch=branch,
            commit_ids=list(commits),
            lines=merge_line_changes(chain),
            files=merge_file_changes(chain),
            from_branches=find_source_branches(commits.values(), branch),
        )

    async def import_commits(
        self,
        repo: Document,
        branch: str,
        head_id: str,
        tail_id: str | None,
        count: int,
    ) -> dict[str, Document]:
        """Import commits breadth-first from the head, stopping at the tail.

        Returns:
            Commits by SHA, in the order they were reached
        """
        ctx = self._ctx
        server = ctx.server
        task_log = await TaskLog.start(
            ctx.task_logs,
            TaskAction.PUSH_IMPORT,
            server_id=server.id,
            repo_id=repo["id"],
            options={"branch": branch},
        )
        try:
            commits: dict[str, Document] = {}
            queue: deque[str] = deque([head_id])
            expected = count
            while queue:
                sha = queue.popleft()
                if sha in commits or sha == tail_id:
                    continue
                commit = await self._commits.import_commit(repo, branch, sha)
                commits[sha] = commit
                queue.extend(get_parent_ids(server, commit))
                expected = max(expected, len(commits) + len(queue))
                task_log.append("added", sha)
                await task_log.report(len(commits), expected)
            await task_log.finish()
        except Exception as e:
            await task_log.abort(e)
            raise
        return commits


def get_parent_ids(server, commit: Document) -> list[str]:
    """Parent SHAs of a commit, as recorded in its link."""
    link = find_link(commit, server) or {}
    info = link.get("commit", {})
    return [parent for parent in info.get("parent_ids", []) if parent != info.get("id")]


def get_commit_chain(
    server,
    commits: dict[str, Document],
    head_id: str,
    tail_id: str | None,
    branch: str,
) -> list[Document]:
    """Return the shortest parent path from head to tail (or a root), oldest first.

    Only commits first pushed to ``branch`` are kept, so changes that arrived
    through a merge are not counted twice.
    """
    if head_id not in commits:
        return []
    previous: dict[str, str | None] = {head_id: None}
    queue: deque[str] = deque([head_id])
    end: str | None = None
    while queue:
        sha = queue.popleft()
        parent_ids = get_parent_ids(server, commits[sha])
        if (tail_id is not None and tail_id in parent_ids) or not parent_ids:
            end = sha
            break
        for parent_id in parent_ids:
            if parent_id in commits and parent_id not in previous:
                previous[parent_id] = sha
                queue.append(parent_id)
    if end is None:
        logger.warning("No path from {} to {}", head_id[:8], (tail_id or "root")[:8])
        return []

    path: list[Document] = []
    sha: str | None = end
    while sha is not None:
        path.append(commits[sha])
        sha = previous[sha]
    # path runs from the oldest commit to the head
    return [commit for commit in path if commit.get("initial_branch") == branch]


def merge_line_changes(chain: list[Document]) -> LineChanges:
    """Sum the line changes of a chain."""
    total = LineChanges()
    for commit in chain:
        lines = (commit.get("details") or {}).get("lines") or {}
        total.added += lines.get("added", 0)
        total.deleted += lines.get("deleted", 0)
        total.modified += lines.get("modified", 0)
    return total


def merge_file_changes(chain: list[Document]) -> FileChanges:
    """Fold the file changes of a chain, oldest commit first.

    A file added then deleted disappears; a file added then renamed is an
    addition under its final name; a renamed file renamed again is one
    rename from the original name; an added file's modifications are not
    listed; deleting a renamed file deletes it under its original name.
    """
    push = FileChanges()
    for commit in chain:
        files = FileChanges.from_dict((commit.get("details") or {}).get("files"))
        for path in files.added:
            if path in push.deleted:
                push.deleted.remove(path)
                if path not in push.modified:
                    push.modified.append(path)
            elif path not in push.added:
                push.added.append(path)
        for path in files.deleted:
            if path in push.modified:
                push.modified.remove(path)
            if path in push.added:
                push.added.remove(path)
                continue
            rename = _find_rename(push.renamed, after=path)
            if rename is not None:
                push.renamed.remove(rename)
                path = rename["before"]
            if path not in push.deleted:
                push.deleted.append(path)
        for rename in files.renamed:
            before, after = rename["before"], rename["after"]
            if before in push.modified:
                push.modified[push.modified.index(before)] = after
            if before in push.added:
                push.added[push.added.index(before)] = after
                continue
            earlier = _find_rename(push.renamed, after=before)
            if earlier is not None:
                push.renamed.remove(earlier)
                before = earlier["before"]
            if before != after:
                push.renamed.append({"before": before, "after": after})
        for path in files.modified:
            if path not in push.added and path not in push.modified:
                push.modified.append(path)
    return push


def _find_rename(renames: list[dict[str, str]], *, after: str) -> dict[str, str] | None:
    for rename in renames:
        if rename["after"] == after:
            return rename
    return None


def find_source_branches(commits, branch: str) -> list[str]:
    """Branches other than ``branch`` that the commits were first pushed to."""
    branches: list[str] = []
    for commit in commits:
        initial = commit.get("initial_branch")
        if initial and initial != branch and initial not in branches:
            branches.append(initial)
    return branches
