"""GitLab REST payloads and a programmable stand-in for the API.

Payload builders return dicts shaped like GitLab v4 responses, with
defaults that can be overridden per test. ``GitLabStub`` serves them to a
real ``GitLabTransport`` through ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx

from story_mirror.config import GitLabConfig
from story_mirror.db.models import Server
from story_mirror.gitlab.transport import GitLabTransport

GITLAB_PROJECT_ID = 99

JAN_10_ISO = "2024-01-10T09:00:00Z"
JAN_12_ISO = "2024-01-12T16:00:00Z"
JAN_15_ISO = "2024-01-15T10:00:00Z"
JAN_16_ISO = "2024-01-16T14:00:00Z"
JAN_20_ISO = "2024-01-20T16:00:00Z"

# Transport settings for tests: one attempt, no waiting
FAST_CONFIG = GitLabConfig(max_attempts=1, retry_delay_ms=0, rate_limit_delay_s=0)

Responder = Callable[[httpx.Request], httpx.Response]


class GitLabStub:
    """Routes ``(method, path)`` to canned responses and records every request.

    Usage:
        gitlab = GitLabStub()
        gitlab.add("GET", "/projects/99/issues/7", gl_issue(iid=7))
        gitlab.add("DELETE", "/projects/99/issues/7", status=204)
        transport = gitlab.transport(server)

    Paths are matched without the ``/api/v4`` prefix and without the query
    string. Unrouted requests get a 404.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Responder] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        status: int = 200,
    ) -> None:
        """Serve ``body`` as JSON (or an empty response) for a route."""

        def respond(request: httpx.Request) -> httpx.Response:
            if body is None:
                return httpx.Response(status)
            return httpx.Response(status, json=body)

        self._routes[(method.upper(), path)] = respond

    def add_responder(self, method: str, path: str, responder: Responder) -> None:
        """Serve a route with a function of the request."""
        self._routes[(method.upper(), path)] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        path = path.removeprefix("/api/v4")
        responder = self._routes.get((request.method, path))
        if responder is None:
            return httpx.Response(404, json={"message": "404 Not Found"})
        return responder(request)

    def transport(self, server: Server, config: GitLabConfig | None = None) -> GitLabTransport:
        """Build a transport for ``server`` whose requests reach this stub."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return _OwningTransport(server, config=config or FAST_CONFIG, client=client)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------
    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        """Recorded requests, optionally filtered by method and path."""
        matched = []
        for request in self.requests:
            request_path = request.url.raw_path.decode("ascii").split("?", 1)[0]
            request_path = request_path.removeprefix("/api/v4")
            if method is not None and request.method != method.upper():
                continue
            if path is not None and request_path != path:
                continue
            matched.append(request)
        return matched

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        """Decoded JSON body of a recorded request."""
        return json.loads(request.content)


class _OwningTransport(GitLabTransport):
    """Transport that closes the client the stub handed it."""

    async def close(self) -> None:
        await self._client.aclose()


# -----------------------------------------------------------------------------
# Payload builders
# -----------------------------------------------------------------------------
def gl_user(id: int = 101, username: str = "alice", **overrides: Any) -> dict[str, Any]:
    """GitLab user as returned by ``/users``."""
    data: dict[str, Any] = {
        "id": id,
        "username": username,
        "name": username.title(),
        "email": f"{username}@example.com",
        "state": "active",
        "avatar_url": f"https://gitlab.example.com/uploads/{username}.png",
        "web_url": f"https://gitlab.example.com/{username}",
        "is_admin": False,
        "external": False,
    }
    data.update(overrides)
    return data


def gl_project(id: int = GITLAB_PROJECT_ID, name: str = "widgets", **overrides: Any) -> dict[str, Any]:
    """GitLab project as returned by ``/projects``."""
    data: dict[str, Any] = {
        "id": id,
        "name": name,
        "path_with_namespace": f"acme/{name}",
        "web_url": f"https://gitlab.example.com/acme/{name}",
        "issues_enabled": True,
        "archived": False,
        "default_branch": "main",
        "created_at": JAN_10_ISO,
    }
    data.update(overrides)
    return data


def gl_issue(
    id: int = 5001,
    iid: int = 7,
    title: str = "Crash on save",
    **overrides: Any,
) -> dict[str, Any]:
    """GitLab issue as returned by ``/projects/:id/issues/:iid``."""
    data: dict[str, Any] = {
        "id": id,
        "iid": iid,
        "project_id": GITLAB_PROJECT_ID,
        "title": title,
        "description": "Saving a #widget crashes the editor",
        "state": "opened",
        "confidential": False,
        "labels": ["bug"],
        "milestone": None,
        "author": gl_user(),
        "assignees": [],
        "web_url": f"https://gitlab.example.com/acme/widgets/issues/{iid}",
        "created_at": JAN_10_ISO,
        "updated_at": JAN_12_ISO,
    }
    data.update(overrides)
    return data


def gl_merge_request(
    id: int = 6001,
    iid: int = 3,
    title: str = "Fix save crash",
    **overrides: Any,
) -> dict[str, Any]:
    """GitLab merge request as returned by ``/projects/:id/merge_requests/:iid``."""
    data = gl_issue(id=id, iid=iid, title=title, labels=[], description="Fixes the crash")
    data.update(
        {
            "web_url": f"https://gitlab.example.com/acme/widgets/merge_requests/{iid}",
            "source_branch": "fix-save",
            "target_branch": "main",
        }
    )
    data.update(overrides)
    return data


def gl_milestone(id: int = 801, title: str = "v1.0", **overrides: Any) -> dict[str, Any]:
    """GitLab milestone as returned by ``/projects/:id/milestones/:id``."""
    data: dict[str, Any] = {
        "id": id,
        "iid": 1,
        "title": title,
        "description": "First #release",
        "state": "active",
        "created_at": JAN_12_ISO,
    }
    data.update(overrides)
    return data


def gl_note(
    id: int = 7001,
    body: str = "Looks good",
    *,
    system: bool = False,
    created_at: str = JAN_16_ISO,
    **overrides: Any,
) -> dict[str, Any]:
    """Note on an issue or merge request."""
    data: dict[str, Any] = {
        "id": id,
        "body": body,
        "system": system,
        "author": gl_user(),
        "created_at": created_at,
    }
    data.update(overrides)
    return data


def gl_event(
    id: int = 9001,
    action_name: str = "opened",
    target_type: str | None = "Issue",
    *,
    target_id: int | None = 5001,
    target_iid: int | None = 7,
    author_id: int = 101,
    author_username: str = "alice",
    created_at: str = JAN_10_ISO,
    **overrides: Any,
) -> dict[str, Any]:
    """Activity-log entry as returned by ``/projects/:id/events``."""
    data: dict[str, Any] = {
        "id": id,
        "project_id": GITLAB_PROJECT_ID,
        "action_name": action_name,
        "target_type": target_type,
        "target_id": target_id,
        "target_iid": target_iid,
        "target_title": "Crash on save",
        "author_id": author_id,
        "author_username": author_username,
        "author": gl_user(id=author_id, username=author_username),
        "created_at": created_at,
    }
    data.update(overrides)
    return data


def gl_push_event(
    id: int = 9100,
    *,
    commit_from: str | None,
    commit_to: str,
    ref: str = "main",
    commit_count: int = 1,
    action: str = "pushed",
    created_at: str = JAN_15_ISO,
) -> dict[str, Any]:
    """``pushed to`` / ``pushed new`` activity-log entry."""
    return gl_event(
        id=id,
        action_name="pushed new" if commit_from is None else "pushed to",
        target_type=None,
        target_id=None,
        target_iid=None,
        created_at=created_at,
        push_data={
            "commit_count": commit_count,
            "action": action,
            "ref_type": "branch",
            "commit_from": commit_from,
            "commit_to": commit_to,
            "ref": ref,
            "commit_title": "Update",
        },
    )


def gl_commit(
    sha: str,
    parent_ids: list[str] | None = None,
    title: str = "Update",
    **overrides: Any,
) -> dict[str, Any]:
    """Commit as returned by ``/projects/:id/repository/commits/:sha``."""
    data: dict[str, Any] = {
        "id": sha,
        "short_id": sha[:8],
        "title": title,
        "message": title,
        "parent_ids": parent_ids or [],
        "author_name": "Alice",
        "author_email": "alice@example.com",
        "created_at": JAN_15_ISO,
        "committed_date": JAN_15_ISO,
    }
    data.update(overrides)
    return data


def gl_diff(
    new_path: str,
    diff: str = "@@ -1 +1 @@\n-old\n+new\n",
    *,
    old_path: str | None = None,
    new_file: bool = False,
    deleted_file: bool = False,
    renamed_file: bool = False,
) -> dict[str, Any]:
    """One file of a commit diff."""
    return {
        "old_path": old_path or new_path,
        "new_path": new_path,
        "new_file": new_file,
        "deleted_file": deleted_file,
        "renamed_file": renamed_file,
        "diff": diff,
    }


def issue_hook(
    action: str = "update",
    *,
    id: int = 5001,
    iid: int = 7,
    title: str = "Crash on save (edited)",
    labels: list[str] | None = None,
    updated_at: str = "2024-01-20 16:00:00 UTC",
    **attributes: Any,
) -> dict[str, Any]:
    """Project webhook body of an issue event; ``attributes`` extend ``object_attributes``."""
    object_attributes = {
        "id": id,
        "iid": iid,
        "title": title,
        "description": "Saving a #widget crashes the editor",
        "state": "opened",
        "confidential": False,
        "action": action,
        "created_at": "2024-01-10 09:00:00 UTC",
        "updated_at": updated_at,
    }
    object_attributes.update(attributes)
    return {
        "object_kind": "issue",
        "user": {"id": 102, "username": "bob", "name": "Bob"},
        "project": {"id": GITLAB_PROJECT_ID},
        "object_attributes": object_attributes,
        "labels": [{"id": 1, "title": label} for label in (labels if labels is not None else ["bug"])],
        "assignees": [],
    }


def merge_request_hook(
    action: str = "update",
    *,
    id: int = 6001,
    iid: int = 3,
    title: str = "Fix save crash",
    **attributes: Any,
) -> dict[str, Any]:
    """Project webhook body of a merge request event, matching ``gl_merge_request``."""
    attributes = {
        "description": "Fixes the crash",
        "source_branch": "fix-save",
        "target_branch": "main",
        **attributes,
    }
    data = issue_hook(action, id=id, iid=iid, title=title, labels=[], **attributes)
    data["object_kind"] = "merge_request"
    return data


def wiki_hook(
    action: str = "create",
    *,
    slug: str = "home",
    title: str = "Home",
    user: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Project webhook body of a wiki page change."""
    return {
        "object_kind": "wiki_page",
        "user": user or {"id": 101, "username": "alice", "name": "Alice"},
        "project": {"id": GITLAB_PROJECT_ID},
        "object_attributes": {
            "slug": slug,
            "title": title,
            "format": "markdown",
            "content": "Welcome to the #widgets wiki",
            "action": action,
            "url": f"https://gitlab.example.com/acme/widgets/-/wikis/{slug}",
        },
    }
