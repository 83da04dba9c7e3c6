"""Tests for text helpers."""

from story_mirror.external.text import (
    attach_resources,
    escape_markdown,
    find_tags_in_markdown,
    label_tags,
    title_hash,
    union,
)


class TestFindTags:
    """Tests for hashtag extraction."""

    def test_finds_distinct_tags_in_order(self):
        assert find_tags_in_markdown("#ui and #bug, again #ui") == ["#ui", "#bug"]

    def test_skips_headings_and_issue_references(self):
        assert find_tags_in_markdown("# Title\nSee #123 for #details") == ["#details"]

    def test_skips_code(self):
        text = "Use `#notag` here\n```\n#also_not\n```\nbut #yes"
        assert find_tags_in_markdown(text) == ["#yes"]

    def test_empty(self):
        assert find_tags_in_markdown(None) == []
        assert find_tags_in_markdown("") == []


class TestLabelTags:
    def test_whitespace_becomes_dash(self):
        assert label_tags(["good first issue", "bug"]) == ["#good-first-issue", "#bug"]

    def test_none(self):
        assert label_tags(None) == []


def test_union_preserves_order():
    assert union(["a", "b"], ["b", "c"], ["a"]) == ["a", "b", "c"]


def test_title_hash_is_md5():
    assert title_hash("") == "d41d8cd98f00b204e9800998ecf8427e"
    assert title_hash(None) == title_hash("")


class TestEscapeMarkdown:
    def test_escapes_special_characters(self):
        assert escape_markdown("a *b* _c_ #d") == r"a \*b\* \_c\_ \#d"

    def test_plain_text_unchanged(self):
        assert escape_markdown("hello world") == "hello world"


class TestAttachResources:
    """Tests for media appended to exported text."""

    def test_images_are_embedded_and_others_linked(self):
        resources = [
            {"type": "image", "url": "https://cdn/a.png"},
            {"type": "video", "url": "https://cdn/b.mp4"},
            {"type": "image", "url": "https://cdn/c.png"},
        ]
        assert attach_resources("Text", resources) == (
            "Text\n\n![image-1](https://cdn/a.png)\n\n[video-1](https://cdn/b.mp4)"
            "\n\n![image-2](https://cdn/c.png)"
        )

    def test_relative_urls_use_site_address(self):
        resources = [{"type": "image", "url": "/media/a.png"}]
        result = attach_resources("", resources, "https://site.example.com/")
        assert result == "![image-1](https://site.example.com/media/a.png)"

    def test_no_resources(self):
        assert attach_resources("Text", None) == "Text"

    def test_resources_without_url_are_skipped(self):
        assert attach_resources("Text", [{"type": "image"}]) == "Text"
