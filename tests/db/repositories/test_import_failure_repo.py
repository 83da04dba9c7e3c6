"""Tests for ImportFailureRepository."""

from datetime import UTC, datetime, timedelta

from story_mirror.db.models import ImportFailureStatus
from story_mirror.db.repositories import ImportFailureRepository
from story_mirror.gitlab import GitLabRetryableError
from tests.factories import make_import_failure, make_server


class TestImportFailureRepositoryQuery:
    """Query method tests for ImportFailureRepository."""

    async def test_get_pending_returns_only_pending(self, db_session, server, repo, project):
        """Get pending failures excludes resolved and permanent."""
        for key, status in [
            ("event:1", ImportFailureStatus.PENDING),
            ("event:2", ImportFailureStatus.PENDING),
            ("event:3", ImportFailureStatus.RESOLVED),
            ("event:4", ImportFailureStatus.PERMANENT),
        ]:
            make_import_failure(
                db_session, server, repo_id=repo["id"], project_id=project.id, event_key=key, status=status
            )
        await db_session.flush()

        results = await ImportFailureRepository(db_session).get_pending()

        assert [failure.event_key for failure in results] == ["event:1", "event:2"]

    async def test_get_pending_oldest_first(self, db_session, server, repo, project):
        now = datetime.now(UTC)
        make_import_failure(
            db_session, server, repo_id=repo["id"], project_id=project.id,
            event_key="event:new", failed_at=now,
        )
        make_import_failure(
            db_session, server, repo_id=repo["id"], project_id=project.id,
            event_key="event:old", failed_at=now - timedelta(hours=1),
        )
        await db_session.flush()

        results = await ImportFailureRepository(db_session).get_pending(limit=1)

        assert [failure.event_key for failure in results] == ["event:old"]

    async def test_get_pending_by_server(self, db_session, server, repo, project):
        other = make_server(db_session, name="other")
        await db_session.flush()
        make_import_failure(db_session, other, repo_id=repo["id"], project_id=project.id, event_key="event:1")
        make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id, event_key="event:2")
        await db_session.flush()

        results = await ImportFailureRepository(db_session).get_pending(limit=1, server_id=server.id)

        assert [failure.event_key for failure in results] == ["event:2"]

    async def test_get_pending_for_event(self, db_session, server, repo, project):
        failure = make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id)
        await db_session.flush()
        repository = ImportFailureRepository(db_session)

        assert (await repository.get_pending_for_event(repo["id"], project.id, "event:1")) is failure
        assert await repository.get_pending_for_event(repo["id"], project.id, "event:2") is None

    async def test_get_stats(self, db_session, server, repo, project):
        make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id, event_key="event:1")
        make_import_failure(
            db_session, server, repo_id=repo["id"], project_id=project.id,
            event_key="event:2", status=ImportFailureStatus.PERMANENT,
        )
        await db_session.flush()

        stats = await ImportFailureRepository(db_session).get_stats()

        assert stats == {"pending": 1, "resolved": 0, "permanent": 1, "total": 2}


class TestImportFailureRepositoryWrite:
    """Create/update method tests for ImportFailureRepository."""

    async def test_record_failure_creates(self, db_session, server, repo, project):
        repository = ImportFailureRepository(db_session)

        failure = await repository.record_failure(
            server_id=server.id,
            repo_id=repo["id"],
            project_id=project.id,
            event_key="event:9001",
            payload={"id": 9001},
            error=GitLabRetryableError("GitLab returned 502", status_code=502),
        )

        assert failure.id is not None
        assert failure.retry_count == 0
        assert failure.error_type == "GitLabRetryableError"
        assert failure.status == ImportFailureStatus.PENDING
        assert failure.payload == {"id": 9001}

    async def test_record_failure_bumps_pending(self, db_session, server, repo, project):
        """A second failure of the same event increments the retry count."""
        repository = ImportFailureRepository(db_session)
        kwargs = dict(
            server_id=server.id,
            repo_id=repo["id"],
            project_id=project.id,
            event_key="event:9001",
            payload={"id": 9001},
        )
        first = await repository.record_failure(**kwargs, error="first")
        second = await repository.record_failure(**kwargs, error=ValueError("second"))

        assert second.id == first.id
        assert second.retry_count == 1
        assert second.error_message == "second"
        assert second.error_type == "ValueError"

    async def test_string_error_type_is_unknown(self, db_session, server, repo, project):
        failure = await ImportFailureRepository(db_session).record_failure(
            server_id=server.id,
            repo_id=repo["id"],
            project_id=project.id,
            event_key="hook:issue:5001:x",
            payload={},
            error="boom",
            is_hook=True,
        )

        assert failure.error_type == "Unknown"
        assert failure.is_hook is True

    async def test_mark_resolved(self, db_session, server, repo, project):
        failure = make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id)
        await db_session.flush()

        result = await ImportFailureRepository(db_session).mark_resolved(failure.id)

        assert result.status == ImportFailureStatus.RESOLVED
        assert result.resolved_at is not None

    async def test_mark_permanent(self, db_session, server, repo, project):
        failure = make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id)
        await db_session.flush()

        result = await ImportFailureRepository(db_session).mark_permanent(failure.id)

        assert result.status == ImportFailureStatus.PERMANENT

    async def test_mark_missing(self, db_session):
        repository = ImportFailureRepository(db_session)

        assert await repository.mark_resolved(999) is None
        assert await repository.mark_permanent(999) is None

    async def test_delete_resolved(self, db_session, server, repo, project):
        failure = make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id)
        make_import_failure(db_session, server, repo_id=repo["id"], project_id=project.id, event_key="event:2")
        await db_session.flush()
        repository = ImportFailureRepository(db_session)
        await repository.mark_resolved(failure.id)

        deleted = await repository.delete_resolved()

        assert deleted == 1
        assert (await repository.get_stats())["total"] == 1
