"""Tests for component descriptors and push decoration."""

import base64

import httpx
import pytest

from story_mirror.gitlab.sync.commit_importer import FileChanges
from story_mirror.gitlab.sync.push_decorator import (
    Component,
    DescriptionCache,
    DescriptionContext,
    Descriptor,
    PushDecorator,
    decode_file_content,
    parse_descriptor,
)
from story_mirror.gitlab.sync.push_reconstructor import Push

HEAD = "c" * 40
NEXT = "d" * 40

DOCS_DESCRIPTOR = """# en
Documentation

```match
*.md
```
"""

WIDGET_DESCRIPTOR = """The widget
[icon]: fa://cog/#fff/#000
"""

TREES = {
    "": [
        {"type": "tree", "name": ".trambar", "path": ".trambar"},
        {"type": "blob", "name": "README.md", "path": "README.md"},
        {"type": "tree", "name": "src", "path": "src"},
    ],
    ".trambar": [{"type": "blob", "name": "docs.md", "path": ".trambar/docs.md"}],
    "src/.trambar": [{"type": "blob", "name": "widget.md", "path": "src/.trambar/widget.md"}],
}


def encoded(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def route_repository(gitlab):
    def tree(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=TREES.get(request.url.params.get("path", ""), []))

    gitlab.add_responder("GET", "/projects/99/repository/tree", tree)
    gitlab.add(
        "GET",
        "/projects/99/repository/files/.trambar%2Fdocs.md",
        {"content": encoded(DOCS_DESCRIPTOR)},
    )
    gitlab.add(
        "GET",
        "/projects/99/repository/files/src%2F.trambar%2Fwidget.md",
        {"content": encoded(WIDGET_DESCRIPTOR)},
    )


def push(head_id: str = HEAD, tail_id: str | None = None, **files) -> Push:
    return Push(head_id=head_id, tail_id=tail_id, type="push", branch="main", files=FileChanges(**files))


class TestParseDescriptor:
    """Tests for reading descriptor markdown."""

    def test_language_sections(self):
        parsed = parse_descriptor("# en\nHello\n# de\nHallo\n", "en")

        assert parsed.descriptions == {"en": "Hello", "de": "Hallo"}
        assert parsed.rules is None
        assert parsed.icon is None

    def test_text_before_headings_is_default_language(self):
        parsed = parse_descriptor("Hello\n# de\nHallo\n", "en")

        assert parsed.descriptions == {"en": "Hello", "de": "Hallo"}

    def test_match_block_holds_rules(self):
        parsed = parse_descriptor(DOCS_DESCRIPTOR, "en")

        assert parsed.rules == ["*.md"]
        assert parsed.descriptions == {"en": "Documentation"}

    def test_other_code_blocks_stay_in_text(self):
        parsed = parse_descriptor("Run:\n```sh\nmake\n```\n", "en")

        assert parsed.descriptions["en"] == "Run:\n```sh\nmake\n```"

    def test_icon_definition(self):
        parsed = parse_descriptor(WIDGET_DESCRIPTOR, "en")

        assert parsed.icon == "fa://cog/#fff/#000"
        assert parsed.descriptions == {"en": "The widget"}


def test_decode_resolves_merge_conflicts():
    text = "a\n<<<<<<< HEAD\nmine\n=======\ntheirs\n>>>>>>> feature\nb\n"

    assert decode_file_content(encoded(text)) == "a\ntheirs\nb\n"


class TestComponent:
    """Tests for component construction."""

    def test_font_awesome_icon(self):
        component = Component.create("src/widget", {"en": "Widget"}, "fa://cog/#fff/#000")

        assert component.to_dict() == {
            "text": {"en": "Widget"},
            "icon": {"class": "cog", "background_color": "#fff", "color": "#000"},
        }

    def test_image_url(self):
        component = Component.create("x", {}, "src/.trambar/widget.png")

        assert component.to_dict() == {"text": {}, "image": {"url": "src/.trambar/widget.png"}}

    def test_no_image(self):
        assert Component.create("x", {"en": "X"}, None).to_dict() == {"text": {"en": "X"}}


class TestDescriptorMatching:
    """Tests for gitignore-style rules."""

    def make(self, folder: str, rules: list[str]) -> Descriptor:
        return Descriptor("widget", folder, rules, Component("widget", {}))

    def test_rules_apply_inside_folder(self):
        descriptor = self.make("src", ["*.py"])

        assert descriptor.matches("src/widget.py")
        assert descriptor.matches("src/deep/widget.py")
        assert not descriptor.matches("lib/widget.py")

    def test_relative_rules_reach_outside(self):
        descriptor = self.make("src", ["../docs/*.md"])

        assert descriptor.matches("docs/widget.md")
        assert not descriptor.matches("docs/other.txt")

    def test_descriptor_files_need_explicit_rule(self):
        assert not self.make("src", ["*"]).matches("src/.trambar/widget.md")
        assert self.make("src", [".trambar/*.md"]).matches("src/.trambar/widget.md")

    def test_root_folder(self):
        assert self.make("", ["*.md"]).matches("README.md")


class TestDescriptionCache:
    """Tests for the caller-owned context cache."""

    def test_evicts_least_recently_used(self):
        cache = DescriptionCache(max_entries=2)
        for head in ("a", "b"):
            cache.put(DescriptionContext(1, 2, head, "en"))
        cache.get(1, 2, "en", "a")
        cache.put(DescriptionContext(1, 2, "c", "en"))

        assert len(cache) == 2
        assert cache.get(1, 2, "en", "a") is not None
        assert cache.get(1, 2, "en", "b") is None

    def test_inherit_skips_touched_entries(self):
        previous = DescriptionContext(1, 2, "a", "en")
        previous.descriptors = {"docs/.trambar/a.md": "A", "src/.trambar/b.md": "B"}
        previous.folders = {"docs": ["x"], "src": ["y"]}
        context = DescriptionContext(1, 2, "b", "en")

        context.inherit(previous, {"added": ["src/new.py"], "modified": ["src/.trambar/b.md"]})

        assert context.descriptors == {"docs/.trambar/a.md": "A"}
        assert context.folders == {"docs": ["x"]}


class TestPushDecorator:
    """Tests for decorating pushes against the stub."""

    async def test_matching_components(self, ctx, gitlab, repo):
        route_repository(gitlab)

        components = await PushDecorator(ctx).retrieve_descriptions(
            repo, push(added=["src/widget.py"], modified=["README.md"])
        )

        assert components == [
            {
                "text": {"en": "The widget"},
                "icon": {"class": "cog", "background_color": "#fff", "color": "#000"},
            },
            {"text": {"en": "Documentation"}},
        ]

    async def test_unmatched_push(self, ctx, gitlab, repo):
        route_repository(gitlab)

        assert await PushDecorator(ctx).retrieve_descriptions(repo, push(added=["Makefile"])) == []

    async def test_same_head_uses_cache(self, ctx, gitlab, repo):
        route_repository(gitlab)
        decorator = PushDecorator(ctx)
        await decorator.retrieve_descriptions(repo, push(modified=["README.md"]))
        count = len(gitlab.requests)

        await decorator.retrieve_descriptions(repo, push(modified=["README.md"]))

        assert len(gitlab.requests) == count

    async def test_next_push_rescans_touched_folders_only(self, ctx, gitlab, repo):
        route_repository(gitlab)
        decorator = PushDecorator(ctx)
        await decorator.retrieve_descriptions(repo, push(modified=["README.md"]))
        gitlab.requests.clear()

        components = await decorator.retrieve_descriptions(
            repo, push(NEXT, HEAD, added=["src/new.py"])
        )

        assert [request.url.params["path"] for request in gitlab.requests] == ["src"]
        assert components == []

    async def test_unreadable_repository_gives_no_components(self, ctx, gitlab, repo):
        gitlab.add("GET", "/projects/99/repository/tree", {"message": "boom"}, status=500)

        assert await PushDecorator(ctx).retrieve_descriptions(repo, push(added=["a.py"])) == []

    async def test_only_descriptor_files_are_read(self, ctx, repo):
        context = DescriptionContext(ctx.server.id, repo["id"], HEAD, "en")

        with pytest.raises(ValueError):
            await PushDecorator(ctx)._retrieve_file(repo, context, "src/widget.md")
