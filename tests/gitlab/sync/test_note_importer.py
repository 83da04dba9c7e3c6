"""Tests for NoteImporter."""

import pytest

from story_mirror.external.text import title_hash
from story_mirror.gitlab.sync.enums import ImportAction
from story_mirror.gitlab.sync.note_importer import NoteImporter
from story_mirror.schemas import GitLabEvent, GitLabHookEvent
from tests.factories import make_story, make_user
from tests.fixtures.gitlab_responses import gl_event, gl_note

SHA = "c0ffee" + "0" * 34


@pytest.fixture
async def alice(ctx, db_session, server):
    user = make_user(db_session, server, username="alice", gl_user_id=101)
    await db_session.flush()
    return await ctx.users.get_document(user.id)


async def story_with_link(ctx, db_session, server, project, **keys):
    story = make_story(
        db_session,
        project,
        type="issue",
        external=[{"type": "gitlab", "server_id": server.id, "project": {"id": 99}, **keys}],
    )
    await db_session.flush()
    return await ctx.stories.get_document(story.id)


def comment_event(noteable_type: str, noteable_id: int | None = 5001, **note) -> GitLabEvent:
    return GitLabEvent.model_validate(
        gl_event(
            action_name="commented on",
            target_type="Note",
            target_id=7001,
            target_title="Update",
            note=gl_note(noteable_type=noteable_type, noteable_id=noteable_id, **note),
        )
    )


class TestIssueNotes:
    """Tests for notes on issues and merge requests."""

    async def test_note_on_issue(self, ctx, db_session, server, project, repo, alice):
        story = await story_with_link(ctx, db_session, server, project, issue={"id": 5001, "number": 7})

        result = await NoteImporter(ctx).process_event(repo, project, alice, comment_event("Issue"))

        assert result.action == ImportAction.CREATED
        reaction = result.document
        assert reaction["type"] == "note"
        assert reaction["story_id"] == story["id"]
        assert reaction["user_id"] == alice["id"]
        assert reaction["external"][0]["note"] == {"id": 7001}
        assert reaction["external"][0]["issue"] == {"id": 5001, "number": 7}

    async def test_note_on_merge_request(self, ctx, db_session, server, project, repo, alice):
        await story_with_link(ctx, db_session, server, project, merge_request={"id": 6001, "number": 3})

        result = await NoteImporter(ctx).process_event(
            repo, project, alice, comment_event("MergeRequest", 6001)
        )

        assert result.action == ImportAction.CREATED

    async def test_replay_is_unchanged(self, ctx, db_session, server, project, repo, alice):
        await story_with_link(ctx, db_session, server, project, issue={"id": 5001, "number": 7})
        importer = NoteImporter(ctx)
        await importer.process_event(repo, project, alice, comment_event("Issue"))

        result = await importer.process_event(repo, project, alice, comment_event("Issue"))

        assert result.action == ImportAction.UNCHANGED
        assert len(await ctx.reactions.find()) == 1

    async def test_missing_story_is_skipped(self, ctx, project, repo, alice):
        result = await NoteImporter(ctx).process_event(repo, project, alice, comment_event("Issue"))

        assert result.action == ImportAction.SKIPPED
        assert "not found" in result.reason

    async def test_unsupported_noteable(self, ctx, project, repo, alice):
        result = await NoteImporter(ctx).process_event(repo, project, alice, comment_event("Snippet"))

        assert result.action == ImportAction.SKIPPED

    async def test_event_without_note(self, ctx, project, repo, alice):
        event = GitLabEvent.model_validate(gl_event(action_name="commented on", target_type="Note"))

        result = await NoteImporter(ctx).process_event(repo, project, alice, event)

        assert result.action == ImportAction.SKIPPED


class TestCommitNotes:
    """Tests for notes on commits, which the activity log does not identify."""

    async def test_commit_id_from_hook(self, ctx, db_session, server, project, repo, alice):
        await story_with_link(ctx, db_session, server, project, commit={"ids": ["a" * 40, SHA]})
        hook = GitLabHookEvent.model_validate(
            {
                "object_kind": "note",
                "object_attributes": {"id": 7001, "commit_id": SHA, "noteable_type": "Commit"},
            }
        )

        result = await NoteImporter(ctx).process_event(
            repo, project, alice, comment_event("Commit", None), hook
        )

        assert result.action == ImportAction.CREATED

    async def test_commit_id_from_comments(self, ctx, gitlab, db_session, server, project, repo, alice):
        """The commit whose comments contain the note's text is the one."""
        await story_with_link(ctx, db_session, server, project, commit={"ids": [SHA]})
        for sha in ("b" * 40, SHA):
            await ctx.commits.insert_one(
                {
                    "initial_branch": "main",
                    "title_hash": title_hash("Update"),
                    "external_key": f"gitlab:{server.id}:commit={sha}",
                    "external": [
                        {"type": "gitlab", "server_id": server.id, "project": {"id": 99}, "commit": {"id": sha}}
                    ],
                }
            )
        gitlab.add("GET", f"/projects/99/repository/commits/{'b' * 40}/comments", [{"note": "Other"}])
        gitlab.add("GET", f"/projects/99/repository/commits/{SHA}/comments", [{"note": "Looks good"}])

        result = await NoteImporter(ctx).process_event(repo, project, alice, comment_event("Commit", None))

        assert result.action == ImportAction.CREATED

    async def test_unknown_commit(self, ctx, project, repo, alice):
        result = await NoteImporter(ctx).process_event(repo, project, alice, comment_event("Commit", None))

        assert result.action == ImportAction.SKIPPED
        assert result.reason == "commit not found"
