"""Text helpers shared by the importers."""

import hashlib
import re

_FENCED_CODE = re.compile(r"^(```|~~~).*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]*`")
_HASHTAG = re.compile(r"(?<![\w&/#])#([^\W\d_][\w-]*|\d+[^\W\d][\w-]*)")
_WHITESPACE = re.compile(r"\s+")


def find_tags_in_markdown(text: str | None) -> list[str]:
    """Return the distinct ``#tags`` of a markdown text, in order of appearance.

    Code blocks and inline code are skipped; headings (``# Title``) and issue
    references (``#123``) are not tags.
    """
    if not text:
        return []
    text = _FENCED_CODE.sub("", text)
    text = _INLINE_CODE.sub("", text)
    tags: list[str] = []
    for match in _HASHTAG.finditer(text):
        tag = f"#{match.group(1)}"
        if tag not in tags:
            tags.append(tag)
    return tags


def label_tags(labels: list[str] | None) -> list[str]:
    """Turn GitLab labels into tags, replacing whitespace with dashes."""
    return [f"#{_WHITESPACE.sub('-', label)}" for label in labels or []]


def union(*lists: list[str]) -> list[str]:
    """Order-preserving union of several lists."""
    result: list[str] = []
    for items in lists:
        for item in items:
            if item not in result:
                result.append(item)
    return result


def title_hash(title: str | None) -> str:
    """MD5 hex digest of a commit title, used to find commits from note events."""
    return hashlib.md5((title or "").encode("utf-8")).hexdigest()


_MARKDOWN_SPECIAL = re.compile(r"([\\`*_\[\]<>#|~])")


def escape_markdown(text: str) -> str:
    """Backslash-escape characters that would turn plain text into markdown."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def attach_resources(text: str, resources: list[dict] | None, address: str | None = None) -> str:
    """Append a story's attached media to an exported text.

    Images are embedded, other resources are linked. Relative URLs are
    resolved against the site's public address.
    """
    lines: list[str] = []
    counts: dict[str, int] = {}
    for resource in resources or []:
        url = resource.get("url")
        if not url:
            continue
        if address and url.startswith("/"):
            url = address.rstrip("/") + url
        type = resource.get("type") or "file"
        counts[type] = counts.get(type, 0) + 1
        label = f"{type}-{counts[type]}"
        if type == "image":
            lines.append(f"![{label}]({url})")
        else:
            lines.append(f"[{label}]({url})")
    if not lines:
        return text
    if not text.strip():
        return "\n\n".join(lines)
    return text + "\n\n" + "\n\n".join(lines)
