"""Links between internal documents and external entities.

A link is a dict stored in a document's ``external`` list:

    {
        "type": "gitlab",
        "server_id": 3,
        "project": {"id": 99},
        "issue": {"id": 42, "number": 7},
        "_import": {"title": "Bug"},
    }

Keys starting with an underscore are private bookkeeping (import/export
snapshots) and are never inherited by child links. All identity comparisons
use structural matching (``is_match``), so a stored link carrying snapshots
still matches a freshly built probe.
"""

from __future__ import annotations

from typing import Any, Protocol

from story_mirror.external.errors import ConflictingLinkError, ParentNotLinkedError

Document = dict[str, Any]
Link = dict[str, Any]


class ServerLike(Protocol):
    """Anything identifying a configured external server."""

    id: int
    type: str


def is_match(value: Any, probe: Any) -> bool:
    """Check whether ``value`` structurally contains ``probe``.

    Dicts match when every probe key matches recursively; lists match when
    every probe item matches some item of the value; scalars compare equal.
    """
    if isinstance(probe, dict):
        if not isinstance(value, dict):
            return False
        return all(key in value and is_match(value[key], item) for key, item in probe.items())
    if isinstance(probe, list):
        if not isinstance(value, list):
            return False
        return all(any(is_match(candidate, item) for candidate in value) for item in probe)
    return value == probe


def create_link(server: ServerLike, **keys: Any) -> Link:
    """Build a bare link to ``server`` carrying the given identifying keys."""
    return {"type": server.type, "server_id": server.id, **keys}


def extend_link(server: ServerLike, parent: Document, **keys: Any) -> Link:
    """Derive a child link from the parent's link to ``server``.

    Private keys of the parent link are dropped, so the child only inherits
    ancestry (project id and so on).

    Raises:
        ParentNotLinkedError: If the parent has no link to the server
    """
    parent_link = find_link(parent, server)
    if parent_link is None:
        raise ParentNotLinkedError(f"Parent object is not linked to server {server.id}")
    inherited = {name: value for name, value in parent_link.items() if not name.startswith("_")}
    return {**inherited, **keys}


def attach_link(obj: Document, link: Link) -> Link:
    """Attach ``link`` to a document, keeping at most one link per server.

    Returns:
        The existing link when it already matches, else the newly attached one

    Raises:
        ConflictingLinkError: If a non-matching link to the same server exists
    """
    external = obj.setdefault("external", [])
    for existing in external:
        if existing.get("server_id") == link["server_id"]:
            if is_match(existing, link):
                return existing
            raise ConflictingLinkError(link["server_id"], existing, link)
    external.append(link)
    return link


def add_link(obj: Document, server: ServerLike, **keys: Any) -> Link:
    """Create a link to ``server`` and attach it."""
    return attach_link(obj, create_link(server, **keys))


def inherit_link(obj: Document, server: ServerLike, parent: Document, **keys: Any) -> Link:
    """Derive a link from ``parent`` and attach it."""
    return attach_link(obj, extend_link(server, parent, **keys))


def find_link(obj: Document, server: ServerLike, props: dict[str, Any] | None = None) -> Link | None:
    """Return the document's link to ``server``, optionally requiring ``props`` to match."""
    for link in obj.get("external") or []:
        if link.get("server_id") == server.id:
            if props is None or is_match(link, props):
                return link
            return None
    return None


def find_link_by_server_type(
    obj: Document, server_type: str, props: dict[str, Any] | None = None
) -> Link | None:
    """Return the first link to any server of the given type."""
    for link in obj.get("external") or []:
        if link.get("type") == server_type:
            if props is None or is_match(link, props):
                return link
            return None
    return None


def remove_link(obj: Document, server: ServerLike, props: dict[str, Any] | None = None) -> None:
    """Remove the document's link to ``server`` (if it matches ``props``)."""
    external = obj.get("external")
    if not external:
        return
    for index, link in enumerate(external):
        if link.get("server_id") == server.id and (props is None or is_match(link, props)):
            del external[index]
            return


def count_links(obj: Document) -> int:
    """Number of external links on a document."""
    return len(obj.get("external") or [])


def public_part(link: Link) -> Link:
    """Return a copy of a link without private snapshot keys."""
    return {name: value for name, value in link.items() if not name.startswith("_")}


def fingerprint(link: Link, *names: str) -> str:
    """Stable identity string of a link, built from the ``id`` of each named key.

    Used as a unique column so two concurrent runs cannot both insert a row
    for the same external entity:

        >>> fingerprint({"type": "gitlab", "server_id": 3,
        ...              "project": {"id": 99}, "issue": {"id": 42}}, "project", "issue")
        'gitlab:3:project=99:issue=42'
    """
    parts = [str(link["type"]), str(link["server_id"])]
    for name in names:
        parts.append(f"{name}={link[name]['id']}")
    return ":".join(parts)
