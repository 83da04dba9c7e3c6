"""Component descriptions for pushes.

A repository can describe its components in markdown files kept in
``.trambar`` folders. Each descriptor names the files that belong to the
component with gitignore-style rules (a fenced ``match`` block), holds a
description per language (``# en``, ``# de`` headings) and optionally an
icon (``[icon]: url``). A push is decorated with the components whose rules
match the files it touched.

Descriptors are loaded per head commit and kept in a ``DescriptionCache``
owned by the caller. A push inherits the descriptors and folder listings of
the entry for its tail commit, except for the ones it touched.
"""

from __future__ import annotations

import base64
import posixpath
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import pathspec

from story_mirror.external import Document
from story_mirror.logging import get_logger

from ..exceptions import GitLabClientError, GitLabNotFoundError
from .context import ImportContext

logger = get_logger(__name__)

DESCRIPTOR_FOLDER = ".trambar"

_IN_DESCRIPTOR_FOLDER = re.compile(r"(^|/)\.trambar/")
_RELATIVE_RULE = re.compile(r"^\s*\.\./")
_LANGUAGE_HEADING = re.compile(r"^#\s*([a-z]{2})\b\s*$", re.IGNORECASE)
_FENCE = re.compile(r"^(```|~~~)\s*([\w-]*)\s*$")
_ICON_DEFINITION = re.compile(r"^\s*\[icon\]:\s*(\S+)", re.IGNORECASE)
_GIT_CONFLICT = re.compile(
    r"<{7}\s\w+\r?\n([\s\S]*?\r?\n)={7}\r?\n([\s\S]*?\r?\n)>{7}\s\w+\r?\n"
)


# -----------------------------------------------------------------------------
# Descriptors
# -----------------------------------------------------------------------------
def _compile(rules: list[str]) -> pathspec.PathSpec | None:
    if not rules:
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", rules)


@dataclass
class Component:
    """What a push decoration shows for a matched descriptor."""

    id: str
    text: dict[str, str]
    image: dict[str, Any] | None = None
    icon: dict[str, Any] | None = None

    @classmethod
    def create(cls, id: str, text: dict[str, str], image_url: str | None) -> Component:
        """Build a component, turning ``fa://class/bg/fg`` URLs into an icon."""
        if not image_url:
            return cls(id, text)
        if image_url.startswith("fa://"):
            parts = image_url[len("fa://"):].split("/")
            return cls(
                id,
                text,
                icon={
                    "class": parts[0],
                    "background_color": parts[1] if len(parts) > 1 and parts[1] else None,
                    "color": parts[2] if len(parts) > 2 and parts[2] else None,
                },
            )
        return cls(id, text, image={"url": image_url})

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"text": dict(self.text)}
        if self.image is not None:
            result["image"] = dict(self.image)
        if self.icon is not None:
            result["icon"] = dict(self.icon)
        return result


@dataclass(eq=False)
class Descriptor:
    """A component descriptor file and the rules it defines.

    Rules are split three ways: rules about ``.trambar`` files, rules
    starting with ``../`` (matched against paths relative to the folder
    even outside it), and ordinary rules (matched only inside the folder).
    """

    name: str
    folder_path: str
    rules: list[str]
    component: Component
    _inside: pathspec.PathSpec | None = field(init=False, repr=False)
    _relative: pathspec.PathSpec | None = field(init=False, repr=False)
    _descriptor_files: pathspec.PathSpec | None = field(init=False, repr=False)

    def __post_init__(self) -> None:
        inside: list[str] = []
        relative: list[str] = []
        descriptor_files: list[str] = []
        for rule in self.rules:
            if not rule.strip():
                continue
            if _IN_DESCRIPTOR_FOLDER.search(rule):
                descriptor_files.append(rule)
            elif _RELATIVE_RULE.match(rule):
                relative.append(rule)
            else:
                inside.append(rule)
        self._inside = _compile(inside)
        self._relative = _compile(relative)
        self._descriptor_files = _compile(descriptor_files)

    def matches(self, path: str) -> bool:
        """Check whether a repository path belongs to this component."""
        relative_path = posixpath.relpath(path, self.folder_path or ".")
        if _IN_DESCRIPTOR_FOLDER.search(path):
            return self._descriptor_files is not None and self._descriptor_files.match_file(
                relative_path
            )
        if self._inside is not None and _is_in_folder(path, self.folder_path):
            if self._inside.match_file(relative_path):
                return True
        return self._relative is not None and self._relative.match_file(relative_path)


def _is_in_folder(file_path: str, folder_path: str) -> bool:
    if not folder_path:
        return True
    return file_path.startswith(folder_path + "/")


@dataclass
class ParsedDescriptor:
    """Content of a descriptor file."""

    descriptions: dict[str, str]
    rules: list[str] | None
    icon: str | None


def parse_descriptor(text: str, default_language_code: str) -> ParsedDescriptor:
    """Parse a descriptor markdown file.

    Text before the first language heading belongs to the default language
    unless a section for that language exists.
    """
    sections: dict[str, list[str]] = {}
    default_lines: list[str] = []
    current = default_lines
    rules: list[str] = []
    icon: str | None = None

    lines = iter(text.splitlines())
    for line in lines:
        heading = _LANGUAGE_HEADING.match(line.strip())
        if heading:
            current = sections[heading.group(1).lower()] = []
            continue
        fence = _FENCE.match(line.strip())
        if fence:
            block: list[str] = []
            for inner in lines:
                if inner.strip() == fence.group(1):
                    break
                block.append(inner)
            if fence.group(2) in ("match", "fnmatch"):
                rules.extend(rule for rule in block if rule.strip())
            else:
                current.extend([line, *block, fence.group(1)])
            continue
        definition = _ICON_DEFINITION.match(line)
        if definition:
            icon = definition.group(1)
            continue
        current.append(line)

    if default_language_code not in sections:
        sections[default_language_code] = default_lines
    descriptions = {code: "\n".join(section).strip() for code, section in sections.items()}
    return ParsedDescriptor(descriptions, rules or None, icon)


def decode_file_content(content: str) -> str:
    """Decode base64 file content, resolving accidentally committed merge conflicts."""
    text = base64.b64decode(content).decode("utf-8", errors="replace")
    if "<<<<<<<" in text:
        text = _GIT_CONFLICT.sub(r"\2", text)
    return text


# -----------------------------------------------------------------------------
# Cache
# -----------------------------------------------------------------------------
@dataclass
class DescriptionContext:
    """Descriptors and folder listings of a repo at one commit."""

    server_id: int
    repo_id: int
    head_id: str
    language_code: str
    folders: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    descriptors: dict[str, Descriptor] = field(default_factory=dict)

    @property
    def key(self) -> tuple[int, int, str, str]:
        return (self.server_id, self.repo_id, self.language_code, self.head_id)

    def inherit(self, previous: DescriptionContext, files: dict[str, Any]) -> None:
        """Copy what the changes in ``files`` (a push's file lists) left valid."""
        renamed = files.get("renamed", [])
        changed = set(files.get("deleted", []))
        changed.update(files.get("modified", []))
        changed.update(rename["before"] for rename in renamed)
        for file_path, descriptor in previous.descriptors.items():
            if file_path not in changed:
                self.descriptors[file_path] = descriptor

        moved = set(files.get("added", [])) | set(files.get("deleted", []))
        moved.update(rename["before"] for rename in renamed)
        moved.update(rename["after"] for rename in renamed)
        touched_folders = {_parent_folder(path) for path in moved}
        for folder_path, listing in previous.folders.items():
            if folder_path not in touched_folders:
                self.folders[folder_path] = listing


def _parent_folder(path: str) -> str:
    folder = posixpath.dirname(path)
    return "" if folder == "." else folder


class DescriptionCache:
    """Most recently used description contexts, owned by the caller."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: OrderedDict[tuple[int, int, str, str], DescriptionContext] = OrderedDict()
        self._max_entries = max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(
        self, server_id: int, repo_id: int, language_code: str, head_id: str
    ) -> DescriptionContext | None:
        key = (server_id, repo_id, language_code, head_id)
        context = self._entries.get(key)
        if context is not None:
            self._entries.move_to_end(key)
        return context

    def put(self, context: DescriptionContext) -> None:
        self._entries[context.key] = context
        self._entries.move_to_end(context.key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


# -----------------------------------------------------------------------------
# Decorator
# -----------------------------------------------------------------------------
class PushDecorator:
    """Finds the component descriptions matching a push.

    Usage:
        decorator = PushDecorator(ctx)
        components = await decorator.retrieve_descriptions(repo, push)
    """

    def __init__(self, ctx: ImportContext) -> None:
        self._ctx = ctx

    async def retrieve_descriptions(self, repo: Document, push: Any) -> list[dict[str, Any]]:
        """Return the components (text, image, icon) touched by a push.

        Failing to read the descriptors leaves the push undecorated.
        """
        try:
            context = await self._get_context(repo, push)
        except GitLabClientError as e:
            logger.warning("Cannot read component descriptions of {}: {}", repo.get("name"), e)
            return []
        files = push.files.to_dict()
        paths = [
            *files["added"],
            *files["deleted"],
            *files["modified"],
            *(rename["before"] for rename in files["renamed"]),
            *(rename["after"] for rename in files["renamed"]),
        ]
        matching: list[Descriptor] = []
        for path in paths:
            for descriptor in context.descriptors.values():
                if descriptor not in matching and descriptor.matches(path):
                    matching.append(descriptor)
        return [descriptor.component.to_dict() for descriptor in matching]

    async def _get_context(self, repo: Document, push: Any) -> DescriptionContext:
        ctx = self._ctx
        cache = ctx.descriptions
        server_id = ctx.server.id
        context = cache.get(server_id, repo["id"], ctx.language_code, push.head_id)
        if context is not None:
            return context

        context = DescriptionContext(server_id, repo["id"], push.head_id, ctx.language_code)
        if push.tail_id:
            previous = cache.get(server_id, repo["id"], ctx.language_code, push.tail_id)
            if previous is not None:
                context.inherit(previous, push.files.to_dict())
        await self._load_descriptors(repo, context, "")
        cache.put(context)
        return context

    async def _load_descriptors(
        self, repo: Document, context: DescriptionContext, folder_path: str
    ) -> None:
        descriptor_folder = posixpath.join(folder_path, DESCRIPTOR_FOLDER)
        for entry in await self._scan_folder(repo, context, descriptor_folder):
            if entry["type"] == "blob" and entry["name"].endswith(".md"):
                await self._load_descriptor(repo, context, folder_path, entry["path"])
        for entry in await self._scan_folder(repo, context, folder_path):
            # descriptor folders are not nested
            if entry["type"] == "tree" and entry["name"] != DESCRIPTOR_FOLDER:
                await self._load_descriptors(repo, context, entry["path"])

    async def _load_descriptor(
        self, repo: Document, context: DescriptionContext, folder_path: str, file_path: str
    ) -> None:
        if file_path in context.descriptors:
            return
        file = await self._retrieve_file(repo, context, file_path)
        parsed = parse_descriptor(decode_file_content(file["content"]), context.language_code)
        name = re.sub(r"\.\w+$", "", posixpath.basename(file_path))
        rules = parsed.rules or [f"{name}.*"]
        image_url = parsed.icon
        if image_url and not re.match(r"^\w+:", image_url):
            image_url = posixpath.join(folder_path, DESCRIPTOR_FOLDER, image_url.removeprefix("./"))
        component = Component.create(f"{folder_path}/{name}", parsed.descriptions, image_url)
        context.descriptors[file_path] = Descriptor(name, folder_path, rules, component)

    async def _scan_folder(
        self, repo: Document, context: DescriptionContext, folder_path: str
    ) -> list[dict[str, Any]]:
        listing = context.folders.get(folder_path)
        if listing is not None:
            return listing
        project_id = self._ctx.project_id(repo)
        query = {"path": folder_path, "ref": context.head_id}
        try:
            listing = await self._ctx.transport.fetch_all(
                f"/projects/{project_id}/repository/tree", query
            )
        except GitLabNotFoundError:
            listing = []
        context.folders[folder_path] = listing
        return listing

    async def _retrieve_file(
        self, repo: Document, context: DescriptionContext, file_path: str
    ) -> dict[str, Any]:
        if not _IN_DESCRIPTOR_FOLDER.search(file_path):
            raise ValueError(f"Not in a {DESCRIPTOR_FOLDER} folder: {file_path}")
        project_id = self._ctx.project_id(repo)
        return await self._ctx.transport.fetch(
            f"/projects/{project_id}/repository/files/{quote(file_path, safe='')}",
            {"ref": context.head_id},
        )
