"""Tests for field-level import and export under overwrite policies."""

from dataclasses import dataclass

import pytest

from story_mirror.external import (
    ExternalDataError,
    UnknownPolicyError,
    create_link,
    export_property,
    get_path,
    import_property,
    import_resource,
    parse_policy,
    set_path,
    unset_path,
)
from story_mirror.external.properties import Overwrite


@dataclass
class FakeServer:
    id: int
    type: str = "gitlab"


SERVER = FakeServer(3)


def linked(**fields) -> dict:
    """A document with a bare link to SERVER."""
    return {"external": [create_link(SERVER)], **fields}


class TestPaths:
    """Tests for dotted path helpers."""

    def test_get_set_unset(self):
        obj: dict = {}
        set_path(obj, "details.title", "Bug")
        assert obj == {"details": {"title": "Bug"}}
        assert get_path(obj, "details.title") == "Bug"
        assert get_path(obj, "details.missing", "x") == "x"
        unset_path(obj, "details.title")
        assert obj == {"details": {}}

    def test_unset_missing_path_is_noop(self):
        obj = {"a": 1}
        unset_path(obj, "b.c")
        assert obj == {"a": 1}


class TestParsePolicy:
    """Tests for policy strings."""

    def test_known_policies(self):
        assert parse_policy("always") == (Overwrite.ALWAYS, "")
        assert parse_policy("never") == (Overwrite.NEVER, "")
        assert parse_policy("match-previous:title") == (Overwrite.MATCH_PREVIOUS, "title")

    def test_unknown_policy(self):
        with pytest.raises(UnknownPolicyError):
            parse_policy("sometimes")

    def test_match_previous_needs_key(self):
        with pytest.raises(UnknownPolicyError):
            parse_policy("match-previous")
        with pytest.raises(UnknownPolicyError):
            parse_policy("match-previous: ")


class TestImportProperty:
    """Tests for import_property."""

    def test_always_overwrites(self):
        obj = linked(details={"title": "Local"})
        import_property(obj, SERVER, "details.title", value="Remote", overwrite="always")
        assert obj["details"]["title"] == "Remote"

    def test_always_with_none_removes(self):
        obj = linked(details={"title": "Local"})
        import_property(obj, SERVER, "details.title", value=None, overwrite="always")
        assert "title" not in obj["details"]

    def test_never_only_fills_missing(self):
        obj = linked(details={})
        import_property(obj, SERVER, "details.title", value="First", overwrite="never")
        import_property(obj, SERVER, "details.title", value="Second", overwrite="never")
        assert obj["details"]["title"] == "First"

    def test_ignore_skips(self):
        obj = linked(details={"title": "Local"})
        import_property(obj, SERVER, "details.title", value="Remote", overwrite="always", ignore=True)
        assert obj["details"]["title"] == "Local"

    def test_ignore_still_validates_policy(self):
        with pytest.raises(UnknownPolicyError):
            import_property(linked(), SERVER, "x", value=1, overwrite="bogus", ignore=True)

    def test_match_previous_first_import(self):
        """The first import sets the field and records the snapshot."""
        obj = linked(details={})
        import_property(obj, SERVER, "details.title", value="Bug", overwrite="match-previous:title")
        assert obj["details"]["title"] == "Bug"
        assert obj["external"][0]["_import"] == {"title": "Bug"}

    def test_match_previous_follows_unedited_field(self):
        obj = linked(details={})
        import_property(obj, SERVER, "details.title", value="Bug", overwrite="match-previous:title")
        import_property(obj, SERVER, "details.title", value="Bug!", overwrite="match-previous:title")
        assert obj["details"]["title"] == "Bug!"
        assert obj["external"][0]["_import"]["title"] == "Bug!"

    def test_match_previous_keeps_local_edit(self):
        """A locally edited field survives, and the snapshot stays put."""
        obj = linked(details={})
        import_property(obj, SERVER, "details.title", value="Bug", overwrite="match-previous:title")
        obj["details"]["title"] = "Edited"
        import_property(obj, SERVER, "details.title", value="Bug!", overwrite="match-previous:title")
        assert obj["details"]["title"] == "Edited"
        assert obj["external"][0]["_import"]["title"] == "Bug"

    def test_match_previous_requires_link(self):
        with pytest.raises(ExternalDataError):
            import_property({}, SERVER, "x", value=1, overwrite="match-previous:x")

    def test_values_are_copied(self):
        """Later changes to the external value do not leak into the document."""
        labels = ["bug"]
        obj = linked()
        import_property(obj, SERVER, "details.labels", value=labels, overwrite="always")
        labels.append("ui")
        assert obj["details"]["labels"] == ["bug"]


class TestImportResource:
    """Tests for import_resource."""

    def test_match_previous_replaces_unedited_image(self):
        obj = linked(details={})
        import_resource(obj, SERVER, type="image", value={"type": "image", "url": "a"}, replace="match-previous")
        import_resource(obj, SERVER, type="image", value={"type": "image", "url": "b"}, replace="match-previous")
        assert obj["details"]["resources"] == [{"type": "image", "url": "b"}]

    def test_match_previous_keeps_replaced_image(self):
        obj = linked(details={})
        import_resource(obj, SERVER, type="image", value={"type": "image", "url": "a"}, replace="match-previous")
        obj["details"]["resources"] = [{"type": "image", "url": "mine"}]
        import_resource(obj, SERVER, type="image", value={"type": "image", "url": "b"}, replace="match-previous")
        assert obj["details"]["resources"] == [{"type": "image", "url": "mine"}]

    def test_always_with_none_removes_slot(self):
        obj = linked(details={"resources": [{"type": "image", "url": "a"}]})
        import_resource(obj, SERVER, type="image", value=None, replace="always")
        assert "resources" not in obj["details"]

    def test_never_keeps_existing(self):
        obj = linked(details={"resources": [{"type": "image", "url": "a"}]})
        import_resource(obj, SERVER, type="image", value={"type": "image", "url": "b"}, replace="never")
        assert obj["details"]["resources"] == [{"type": "image", "url": "a"}]


class TestExportProperty:
    """Tests for export_property."""

    def test_first_export_sets_value_and_snapshot(self):
        story = linked()
        issue: dict = {}
        export_property(story, SERVER, "title", issue, value="Bug", overwrite="match-previous:title")
        assert issue == {"title": "Bug"}
        assert story["external"][0]["_export"] == {"title": "Bug"}

    def test_unedited_remote_field_is_overwritten(self):
        story = linked()
        export_property(story, SERVER, "title", {}, value="Bug", overwrite="match-previous:title")
        issue = {"title": "Bug"}
        export_property(story, SERVER, "title", issue, value="Bug v2", overwrite="match-previous:title")
        assert issue["title"] == "Bug v2"
        assert story["external"][0]["_export"]["title"] == "Bug v2"

    def test_remote_edit_is_kept(self):
        """A field changed on GitLab since the last export is not overwritten."""
        story = linked()
        export_property(story, SERVER, "title", {}, value="Bug", overwrite="match-previous:title")
        issue = {"title": "Edited on GitLab"}
        export_property(story, SERVER, "title", issue, value="Bug v2", overwrite="match-previous:title")
        assert issue["title"] == "Edited on GitLab"
        assert story["external"][0]["_export"]["title"] == "Bug"

    def test_never_fills_missing_only(self):
        issue = {"title": "Remote"}
        export_property(linked(), SERVER, "title", issue, value="Local", overwrite="never")
        assert issue["title"] == "Remote"
