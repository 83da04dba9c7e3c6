"""Field-level import and export under overwrite policies.

Three policies decide whether an external value may replace the live one:

- ``always``: the external system is the system of record
- ``never``: first import wins, later imports leave the field alone
- ``match-previous:<key>``: three-way merge against the snapshot of the
  last imported (or exported) value, stored in the link under ``_import``
  (or ``_export``) at ``<key>``. A field that still equals its snapshot has
  not been edited locally and may be overwritten; one that differs keeps the
  local edit and the snapshot stays where it was.
"""

from __future__ import annotations

import copy
from enum import StrEnum
from typing import Any

from story_mirror.external.errors import ExternalDataError, UnknownPolicyError
from story_mirror.external.links import Document, ServerLike, find_link

IMPORT_SNAPSHOT = "_import"
EXPORT_SNAPSHOT = "_export"
RESOURCES_PATH = "details.resources"
RESOURCES_KEY = "resources"

_MISSING = object()


class Overwrite(StrEnum):
    """Overwrite policy names."""

    ALWAYS = "always"
    NEVER = "never"
    MATCH_PREVIOUS = "match-previous"


def parse_policy(overwrite: str) -> tuple[Overwrite, str]:
    """Split a policy string into the policy and its exchange key ("" for none).

    Raises:
        UnknownPolicyError: If the policy name is not recognized
    """
    name, _, key = overwrite.partition(":")
    try:
        policy = Overwrite(name.strip())
    except ValueError:
        raise UnknownPolicyError(f"Unknown overwrite policy: {overwrite!r}") from None
    if policy is Overwrite.MATCH_PREVIOUS and not key.strip():
        raise UnknownPolicyError(f"match-previous requires an exchange key: {overwrite!r}")
    return policy, key.strip()


# -----------------------------------------------------------------------------
# Dotted path helpers
# -----------------------------------------------------------------------------
def get_path(obj: dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path, returning ``default`` when any segment is missing."""
    node: Any = obj
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def set_path(obj: dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path, creating intermediate dicts."""
    parts = path.split(".")
    node = obj
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def unset_path(obj: dict[str, Any], path: str) -> None:
    """Remove a dotted path if present."""
    parts = path.split(".")
    node: Any = obj
    for part in parts[:-1]:
        if not isinstance(node, dict) or part not in node:
            return
        node = node[part]
    if isinstance(node, dict):
        node.pop(parts[-1], None)


def _snapshot(obj: Document, server: ServerLike, which: str) -> dict[str, Any]:
    link = find_link(obj, server)
    if link is None:
        raise ExternalDataError(f"Object is not linked to server {server.id}")
    return link.setdefault(which, {})


# -----------------------------------------------------------------------------
# Import
# -----------------------------------------------------------------------------
def import_property(
    obj: Document,
    server: ServerLike,
    path: str,
    *,
    value: Any,
    overwrite: str,
    ignore: bool = False,
) -> None:
    """Apply one external value to a document field.

    Args:
        obj: Document being built (mutated in place)
        server: Server the value came from
        path: Dotted path of the field (e.g. ``details.title``)
        value: External value; ``None`` means the source has no value
        overwrite: ``always``, ``never`` or ``match-previous:<key>``
        ignore: Skip the field entirely

    Raises:
        UnknownPolicyError: If ``overwrite`` is not a known policy
    """
    policy, key = parse_policy(overwrite)
    if ignore:
        return
    current = get_path(obj, path)
    if policy is Overwrite.ALWAYS:
        if value is not None:
            set_path(obj, path, copy.deepcopy(value))
        else:
            unset_path(obj, path)
    elif policy is Overwrite.NEVER:
        if current is None and value is not None:
            set_path(obj, path, copy.deepcopy(value))
    else:
        previous = _snapshot(obj, server, IMPORT_SNAPSHOT)
        if current != previous.get(key):
            # edited locally since the last import
            return
        if value is not None:
            set_path(obj, path, copy.deepcopy(value))
            previous[key] = copy.deepcopy(value)
        else:
            unset_path(obj, path)
            previous.pop(key, None)


def import_resource(
    obj: Document,
    server: ServerLike,
    *,
    type: str,
    value: dict[str, Any] | None,
    replace: str,
    ignore: bool = False,
) -> None:
    """Apply an external resource to the ``details.resources`` slot of its type.

    Args:
        obj: Document being built (mutated in place)
        server: Server the resource came from
        type: Resource type identifying the slot (e.g. ``image``)
        value: Resource dict, or ``None`` to remove the slot
        replace: ``always``, ``never`` or ``match-previous``
        ignore: Skip the resource entirely

    Raises:
        UnknownPolicyError: If ``replace`` is not a known policy
    """
    if replace == Overwrite.MATCH_PREVIOUS:
        replace = f"{Overwrite.MATCH_PREVIOUS}:{RESOURCES_KEY}"
    policy, _ = parse_policy(replace)
    if ignore:
        return
    resources: list[dict[str, Any]] = copy.deepcopy(get_path(obj, RESOURCES_PATH) or [])
    index = _find_resource(resources, type)

    if policy is Overwrite.ALWAYS:
        _put_resource(resources, index, value)
    elif policy is Overwrite.NEVER:
        if index is None and value:
            resources.append(copy.deepcopy(value))
    else:
        previous = _snapshot(obj, server, IMPORT_SNAPSHOT)
        previous_resources: list[dict[str, Any]] = previous.get(RESOURCES_KEY, [])
        previous_index = _find_resource(previous_resources, type)
        current = resources[index] if index is not None else None
        previous_value = previous_resources[previous_index] if previous_index is not None else None
        if current == previous_value:
            _put_resource(resources, index, value)
            _put_resource(previous_resources, previous_index, value)
        if previous_resources:
            previous[RESOURCES_KEY] = previous_resources
        else:
            previous.pop(RESOURCES_KEY, None)

    if resources:
        set_path(obj, RESOURCES_PATH, resources)
    else:
        unset_path(obj, RESOURCES_PATH)


def _find_resource(resources: list[dict[str, Any]], type: str) -> int | None:
    for index, resource in enumerate(resources):
        if resource.get("type") == type:
            return index
    return None


def _put_resource(
    resources: list[dict[str, Any]], index: int | None, value: dict[str, Any] | None
) -> None:
    if index is None:
        if value:
            resources.append(copy.deepcopy(value))
    elif value:
        resources[index] = copy.deepcopy(value)
    else:
        del resources[index]


# -----------------------------------------------------------------------------
# Export
# -----------------------------------------------------------------------------
def export_property(
    obj: Document,
    server: ServerLike,
    path: str,
    dest: dict[str, Any],
    *,
    value: Any,
    overwrite: str,
    ignore: bool = False,
) -> None:
    """Apply one internal value to an outbound external object.

    The mirror image of ``import_property``: match-previous compares the
    external object's current value against the ``_export`` snapshot kept in
    the internal document's link, and only overwrites (and advances the
    snapshot) when they agree.

    Args:
        obj: Internal document holding the link with the export snapshot
        server: Destination server
        path: Dotted path in the external object
        dest: External object being built (mutated in place)
        value: Internal value to export
        overwrite: ``always``, ``never`` or ``match-previous:<key>``
        ignore: Skip the field entirely
    """
    policy, key = parse_policy(overwrite)
    if ignore:
        return
    current = get_path(dest, path, _MISSING)
    if policy is Overwrite.ALWAYS:
        set_path(dest, path, copy.deepcopy(value))
    elif policy is Overwrite.NEVER:
        if current is _MISSING or current is None:
            set_path(dest, path, copy.deepcopy(value))
    else:
        previous = _snapshot(obj, server, EXPORT_SNAPSHOT)
        if current == previous.get(key, _MISSING):
            set_path(dest, path, copy.deepcopy(value))
            previous[key] = copy.deepcopy(value)
