"""Tests for IssueExporter."""

import pytest

from story_mirror.external import DataNotFoundError, find_link
from story_mirror.gitlab.sync.enums import ImportAction
from story_mirror.gitlab.sync.issue_exporter import IssueExporter
from story_mirror.gitlab.sync.issue_importer import IssueImporter
from story_mirror.schemas import GitLabEvent
from tests.factories import make_project, make_repo, make_server, make_story, make_user
from tests.fixtures.gitlab_responses import gl_event, gl_issue

OPTIONS = {"title": "Crash on save", "labels": ["bug"]}


@pytest.fixture
async def alice(db_session, server):
    user = make_user(db_session, server, username="alice", gl_user_id=101, name="Alice")
    await db_session.flush()
    return user


@pytest.fixture
async def story(db_session, project, alice):
    story = make_story(db_session, project, user_ids=[alice.id], details={"text": {"en": "Saving crashes"}})
    await db_session.flush()
    return story


@pytest.fixture
async def exporter(db_session, gitlab):
    exporter = IssueExporter(db_session, gitlab.transport)
    yield exporter
    await exporter.close()


@pytest.fixture
async def exported(exporter, gitlab, project, repo, story, alice):
    """The story after a first export to ``repo``."""
    gitlab.add("POST", "/projects/99/issues", gl_issue(description="Saving crashes"))
    result = await exporter.export_story(project, story.id, repo["id"], alice.id, OPTIONS)
    return result.document


async def tracking_reactions(exporter, story_id: int) -> list[dict]:
    return await exporter.reactions.find({"story_id": story_id, "type": "tracking"})


class TestExportCreate:
    """Tests for exporting a story for the first time."""

    async def test_creates_issue(self, exporter, gitlab, server, project, repo, story, alice, exported):
        assert exported["type"] == "issue"
        assert exported["external_key"] == f"gitlab:{server.id}:project=99:issue=5001"
        assert exported["details"]["number"] == 7
        assert exported["details"]["exported"] is True
        assert exported["details"]["title"] == "Crash on save"
        assert exported["tags"] == ["#bug"]
        assert exported["etime"] is not None
        link = find_link(exported, server)
        assert link["project"] == {"id": 99}
        assert link["issue"] == {"id": 5001, "number": 7}
        assert link["_export"] == {
            "title": "Crash on save",
            "description": "Saving crashes",
            "confidential": False,
            "labels": ["bug"],
        }
        assert link["_import"] == {"title": "Crash on save", "labels": ["bug"]}

    async def test_posts_as_acting_user(self, gitlab, exported):
        request = gitlab.calls("POST", "/projects/99/issues")[0]

        assert request.headers["Sudo"] == "101"
        assert gitlab.body(request) == {
            "title": "Crash on save",
            "description": "Saving crashes",
            "confidential": False,
            "labels": "bug",
        }

    async def test_tracking_reaction(self, exporter, server, story, alice, exported):
        reactions = await tracking_reactions(exporter, story.id)

        assert len(reactions) == 1
        assert reactions[0]["user_id"] == alice.id
        assert find_link(reactions[0], server)["issue"] == {"id": 5001, "number": 7}

    async def test_task_log(self, exporter, project, repo, exported):
        entry = await exporter.task_logs.last("gitlab-issue-export", repo_id=repo["id"], project_id=project.id)

        assert entry.details["action"] == "created"
        assert entry.completion == 100

    async def test_private_story_is_confidential(self, exporter, gitlab, db_session, project, repo, alice):
        story = make_story(db_session, project, user_ids=[alice.id])
        story.public = False
        await db_session.flush()
        gitlab.add("POST", "/projects/99/issues", gl_issue(confidential=True))

        await exporter.export_story(project, story.id, repo["id"], alice.id, OPTIONS)

        assert gitlab.body(gitlab.calls("POST")[0])["confidential"] is True


class TestExportUpdate:
    """Tests for exporting an already exported story again."""

    async def test_unchanged(self, exporter, gitlab, project, repo, story, alice, exported):
        gitlab.add("GET", "/projects/99/issues/7", gl_issue(description="Saving crashes"))

        result = await exporter.export_story(project, story.id, repo["id"], alice.id, OPTIONS)

        assert result.action == ImportAction.UNCHANGED
        assert gitlab.calls("PUT") == []

    async def test_keeps_remote_edits(self, exporter, gitlab, project, repo, story, alice, exported):
        edited = await exporter.stories.get_document(story.id)
        edited["details"]["text"] = {"en": "Saving always crashes"}
        await exporter.stories.update_one(edited)
        gitlab.add("GET", "/projects/99/issues/7", gl_issue(title="Renamed on GitLab", description="Saving crashes"))
        gitlab.add(
            "PUT",
            "/projects/99/issues/7",
            gl_issue(title="Renamed on GitLab", description="Saving always crashes"),
        )

        result = await exporter.export_story(project, story.id, repo["id"], alice.id, OPTIONS)

        assert result.action == ImportAction.UPDATED
        request = gitlab.calls("PUT")[0]
        assert request.headers["Sudo"] == "101"
        body = gitlab.body(request)
        assert body["title"] == "Renamed on GitLab"
        assert body["description"] == "Saving always crashes"
        assert result.document["details"]["title"] == "Renamed on GitLab"


class TestImportAfterExport:
    """Tests for importing an exported issue after it changed on GitLab."""

    async def import_update(self, ctx, gitlab, repo, project, alice, **changes):
        gitlab.add("GET", "/projects/99/issues/7", gl_issue(**changes))
        gitlab.add("GET", "/projects/99/issues/7/notes", [])
        author = await ctx.users.get_document(alice.id)
        event = GitLabEvent.model_validate(gl_event(action_name="updated"))
        return await IssueImporter(ctx).process_event(repo, project, author, event)

    async def test_follows_edits_on_gitlab(self, ctx, gitlab, server, project, repo, story, alice, exported):
        result = await self.import_update(
            ctx, gitlab, repo, project, alice, title="Renamed on GitLab", labels=["bug", "ui"]
        )

        assert result.action == ImportAction.UPDATED
        assert result.document["id"] == story.id
        assert result.document["details"]["title"] == "Renamed on GitLab"
        assert result.document["details"]["labels"] == ["bug", "ui"]
        assert find_link(result.document, server)["_import"] == {
            "title": "Renamed on GitLab",
            "labels": ["bug", "ui"],
        }

    async def test_local_title_edit_after_export_survives(
        self, ctx, gitlab, project, repo, story, alice, exported
    ):
        edited = await ctx.stories.get_document(story.id)
        edited["details"]["title"] = "Editor crash"
        await ctx.stories.update_one(edited)

        result = await self.import_update(ctx, gitlab, repo, project, alice, title="Renamed on GitLab")

        assert result.document["details"]["title"] == "Editor crash"


class TestExportMove:
    """Tests for moving an exported story to another repo."""

    async def test_move_within_server(self, exporter, gitlab, db_session, server, project, story, alice, exported):
        gadgets = make_repo(db_session, server, gl_project_id=100, name="gadgets")
        await db_session.flush()
        gitlab.add("POST", "/projects/99/issues/7/move", gl_issue(id=5002, iid=1, project_id=100))

        result = await exporter.export_story(project, story.id, gadgets.id, alice.id, OPTIONS)

        assert result.action == ImportAction.UPDATED
        request = gitlab.calls("POST", "/projects/99/issues/7/move")[0]
        assert gitlab.body(request) == {"to_project_id": 100}
        assert request.headers["Sudo"] == "101"
        moved = result.document
        link = find_link(moved, server)
        assert link["project"] == {"id": 100}
        assert link["issue"] == {"id": 5002, "number": 1}
        assert link["_export"]["title"] == "Crash on save"
        assert moved["external_key"] == f"gitlab:{server.id}:project=100:issue=5002"
        reactions = await tracking_reactions(exporter, story.id)
        assert len(reactions) == 1
        assert find_link(reactions[0], server)["project"] == {"id": 100}
        assert find_link(reactions[0], server)["issue"] == {"id": 5002, "number": 1}

    async def test_move_across_servers(self, exporter, gitlab, db_session, server, project, story, alice, exported):
        other = make_server(db_session, name="other", base_url="https://other.example.com")
        await db_session.flush()
        alice.external = [
            *alice.external,
            {"type": "gitlab", "server_id": other.id, "user": {"id": 201, "username": "alice"}},
        ]
        remote = make_repo(db_session, other, gl_project_id=55, name="remote")
        await db_session.flush()
        gitlab.add("POST", "/projects/55/issues", gl_issue(id=8001, iid=2, project_id=55))
        gitlab.add("DELETE", "/projects/99/issues/7", status=204)

        result = await exporter.export_story(project, story.id, remote.id, alice.id, OPTIONS)

        assert result.action == ImportAction.CREATED
        assert gitlab.calls("POST", "/projects/55/issues")[0].headers["Sudo"] == "201"
        assert "Sudo" not in gitlab.calls("DELETE")[0].headers
        stored = await exporter.stories.get_document(story.id)
        assert find_link(stored, server) is None
        assert find_link(stored, other)["issue"] == {"id": 8001, "number": 2}
        assert stored["external_key"] == f"gitlab:{other.id}:project=55:issue=8001"
        reactions = await tracking_reactions(exporter, story.id)
        assert [(r["deleted"], find_link(r, other) is not None) for r in reactions] == [
            (True, False),
            (False, True),
        ]


class TestExportRemove:
    """Tests for withdrawing an exported story."""

    async def test_remove(self, exporter, gitlab, server, project, story, alice, exported):
        gitlab.add("DELETE", "/projects/99/issues/7", status=204)

        result = await exporter.export_story(project, story.id, None, alice.id)

        assert result.action == ImportAction.DELETED
        removed = result.document
        assert removed["type"] == "post"
        assert removed["external_key"] is None
        assert removed["etime"] is None
        assert "title" not in removed["details"]
        assert "number" not in removed["details"]
        assert find_link(removed, server) is None
        reactions = await tracking_reactions(exporter, story.id)
        assert [r["deleted"] for r in reactions] == [True]

    async def test_never_exported(self, exporter, project, story, alice):
        result = await exporter.export_story(project, story.id, None, alice.id)

        assert result.action == ImportAction.SKIPPED


class TestExportErrors:
    """Tests for exports that cannot proceed."""

    async def test_user_without_account(self, exporter, db_session, project, repo, story):
        bob = make_user(db_session, username="bob")
        await db_session.flush()

        with pytest.raises(DataNotFoundError, match="not associated"):
            await exporter.export_story(project, story.id, repo["id"], bob.id, OPTIONS)

        entry = await exporter.task_logs.last("gitlab-issue-export", repo_id=repo["id"], project_id=project.id)
        assert entry.error.startswith("DataNotFoundError")

    async def test_story_of_other_project(self, exporter, db_session, repo, story, alice):
        other = make_project(db_session, name="other")
        await db_session.flush()

        with pytest.raises(DataNotFoundError):
            await exporter.export_story(other, story.id, repo["id"], alice.id)

    async def test_disabled_server(self, exporter, db_session, server, project, repo, story, alice):
        server.disabled = True
        await db_session.flush()

        with pytest.raises(DataNotFoundError, match="disabled"):
            await exporter.export_story(project, story.id, repo["id"], alice.id, OPTIONS)

    async def test_missing_repo(self, exporter, project, story, alice):
        with pytest.raises(DataNotFoundError):
            await exporter.export_story(project, story.id, 9999, alice.id)


class TestGenerateIssueText:
    """Tests for rendering a story as an issue description."""

    ALICE = {"id": 1, "username": "alice", "details": {"name": "Alice"}}
    BOB = {"id": 2, "username": "bob", "details": {"name": "Bob"}}
    CAROL = {"id": 3, "username": "carol", "details": {}}

    def test_plain_text_is_escaped(self, db_session):
        story = {"details": {"text": {"en": "Use *bold* here"}}}

        text = IssueExporter(db_session).generate_issue_text(story, [self.ALICE], self.ALICE)

        assert text == "Use \\*bold\\* here"

    def test_markdown_is_kept(self, db_session):
        story = {"details": {"text": {"en": "Use *bold* here"}, "markdown": True}}

        assert IssueExporter(db_session).generate_issue_text(story, [self.ALICE], self.ALICE) == "Use *bold* here"

    def test_names_other_authors(self, db_session):
        story = {"details": {"text": {"en": "Hello"}}}

        text = IssueExporter(db_session).generate_issue_text(story, [self.BOB, self.CAROL], self.ALICE)

        assert text == "Bob and carol wrote:\n\nHello"

    def test_media_only_story(self, db_session, monkeypatch):
        monkeypatch.setenv("SITE_ADDRESS", "https://trambar.example.com")
        story = {
            "details": {
                "resources": [
                    {"type": "image", "url": "/media/a.png"},
                    {"type": "image", "url": "https://cdn.example.com/b.png"},
                    {"type": "video", "url": "/media/c.mp4"},
                ]
            }
        }

        text = IssueExporter(db_session).generate_issue_text(story, [self.BOB], self.ALICE)

        assert text == (
            "Bob posted 2 images and 1 video:\n\n"
            "![image-1](https://trambar.example.com/media/a.png)\n\n"
            "![image-2](https://cdn.example.com/b.png)\n\n"
            "[video-1](https://trambar.example.com/media/c.mp4)"
        )
