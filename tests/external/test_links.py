"""Tests for the link model."""

from dataclasses import dataclass

import pytest

from story_mirror.external import (
    ConflictingLinkError,
    ParentNotLinkedError,
    add_link,
    attach_link,
    count_links,
    create_link,
    extend_link,
    find_link,
    find_link_by_server_type,
    fingerprint,
    inherit_link,
    is_match,
    public_part,
    remove_link,
)


@dataclass
class FakeServer:
    id: int
    type: str = "gitlab"


SERVER = FakeServer(3)
OTHER = FakeServer(4)


class TestIsMatch:
    """Tests for structural matching."""

    def test_dict_probe_is_subset(self):
        """A probe matches when all of its keys match."""
        value = {"type": "gitlab", "server_id": 3, "issue": {"id": 42, "number": 7}}
        assert is_match(value, {"issue": {"id": 42}})
        assert not is_match(value, {"issue": {"id": 43}})

    def test_missing_key_does_not_match(self):
        """A probe key absent from the value fails."""
        assert not is_match({"server_id": 3}, {"project": {"id": 1}})

    def test_list_probe_items_must_each_match(self):
        """Every probe list item must match some value item."""
        value = {"commit": {"ids": ["a", "b", "c"]}}
        assert is_match(value, {"commit": {"ids": ["c", "a"]}})
        assert not is_match(value, {"commit": {"ids": ["a", "d"]}})

    def test_scalar_equality(self):
        """Scalars compare equal."""
        assert is_match(5, 5)
        assert not is_match(5, "5")


class TestLinkConstruction:
    """Tests for creating and deriving links."""

    def test_create_link(self):
        """A bare link names the server type and id."""
        assert create_link(SERVER, project={"id": 99}) == {
            "type": "gitlab",
            "server_id": 3,
            "project": {"id": 99},
        }

    def test_extend_link_drops_private_keys(self):
        """Child links inherit ancestry but not snapshots."""
        parent = {"external": [{**create_link(SERVER, project={"id": 99}), "_import": {"x": 1}}]}
        child = extend_link(SERVER, parent, issue={"id": 5})
        assert child == {
            "type": "gitlab",
            "server_id": 3,
            "project": {"id": 99},
            "issue": {"id": 5},
        }

    def test_extend_link_requires_parent_link(self):
        """Deriving from an unlinked parent raises."""
        with pytest.raises(ParentNotLinkedError):
            extend_link(SERVER, {"external": []})

    def test_inherit_link_attaches(self):
        """inherit_link derives and attaches in one step."""
        parent = {"external": [create_link(SERVER, project={"id": 99})]}
        obj: dict = {}
        link = inherit_link(obj, SERVER, parent, note={"id": 1})
        assert obj["external"] == [link]
        assert link["project"] == {"id": 99}


class TestAttachLink:
    """Tests for the one-link-per-server rule."""

    def test_attach_to_empty(self):
        """The first link is appended."""
        obj: dict = {}
        link = attach_link(obj, create_link(SERVER, user={"id": 1}))
        assert obj["external"] == [link]

    def test_matching_link_returns_existing(self):
        """Attaching a link the object already has keeps the stored one."""
        stored = {**create_link(SERVER, user={"id": 1, "username": "a"}), "_import": {"n": 1}}
        obj = {"external": [stored]}
        assert attach_link(obj, create_link(SERVER, user={"id": 1})) is stored
        assert count_links(obj) == 1

    def test_conflicting_link_raises(self):
        """A different link to the same server is corrupt identity data."""
        obj = {"external": [create_link(SERVER, user={"id": 1})]}
        with pytest.raises(ConflictingLinkError) as exc_info:
            attach_link(obj, create_link(SERVER, user={"id": 2}))
        assert exc_info.value.server_id == 3

    def test_links_to_other_servers_coexist(self):
        """Each server gets its own link."""
        obj: dict = {}
        add_link(obj, SERVER, user={"id": 1})
        add_link(obj, OTHER, user={"id": 1})
        assert count_links(obj) == 2


class TestLinkLookup:
    """Tests for finding and removing links."""

    def test_find_link_by_server(self):
        obj = {"external": [create_link(OTHER), create_link(SERVER, project={"id": 1})]}
        assert find_link(obj, SERVER) == create_link(SERVER, project={"id": 1})

    def test_find_link_with_props(self):
        """Props must match the server's link."""
        obj = {"external": [create_link(SERVER, project={"id": 1})]}
        assert find_link(obj, SERVER, {"project": {"id": 1}}) is not None
        assert find_link(obj, SERVER, {"project": {"id": 2}}) is None

    def test_find_link_by_server_type(self):
        obj = {"external": [{"type": "github", "server_id": 9}, create_link(SERVER)]}
        assert find_link_by_server_type(obj, "gitlab")["server_id"] == 3
        assert find_link_by_server_type(obj, "gitea") is None

    def test_remove_link(self):
        obj = {"external": [create_link(SERVER), create_link(OTHER)]}
        remove_link(obj, SERVER)
        assert obj["external"] == [create_link(OTHER)]

    def test_remove_link_respects_props(self):
        """A link that does not match the props stays."""
        obj = {"external": [create_link(SERVER, project={"id": 1})]}
        remove_link(obj, SERVER, {"project": {"id": 2}})
        assert count_links(obj) == 1


class TestFingerprint:
    """Tests for link identity strings."""

    def test_fingerprint(self):
        link = create_link(SERVER, project={"id": 99}, issue={"id": 42, "number": 7})
        assert fingerprint(link, "project", "issue") == "gitlab:3:project=99:issue=42"

    def test_public_part(self):
        link = {**create_link(SERVER), "_export": {"title": "x"}}
        assert public_part(link) == create_link(SERVER)
