"""Tests for the TaskLog progress tracker."""

from story_mirror.db.repositories import TaskLogRepository
from story_mirror.gitlab.sync.enums import TaskAction
from story_mirror.gitlab.sync.task_log import TaskLog


class TestTaskLog:
    """Tests for progress reports and completion."""

    async def test_start_accepts_enum(self, db_session):
        task_log = await TaskLog.start(TaskLogRepository(db_session), TaskAction.EVENT_IMPORT, repo_id=1)

        assert task_log.entry.action == "gitlab-event-import"
        assert task_log.completion == 0

    async def test_report_percentage(self, db_session):
        task_log = await TaskLog.start(TaskLogRepository(db_session), "gitlab-user-import")

        await task_log.report(1, 3)
        assert task_log.completion == 33
        await task_log.report(5, 4)
        assert task_log.completion == 100

    async def test_report_unknown_total_keeps_completion(self, db_session):
        task_log = await TaskLog.start(TaskLogRepository(db_session), "gitlab-user-import")
        await task_log.report(1, 2)

        await task_log.report(7, None, {"page": 2})

        assert task_log.completion == 50
        assert task_log.details == {"page": 2}

    async def test_set_and_append(self, db_session):
        task_log = await TaskLog.start(TaskLogRepository(db_session), "gitlab-user-import")

        task_log.set("last_event_time", "2024-01-15T10:00:00+00:00")
        task_log.append("added", "alice")
        task_log.append("added", "bob")

        assert task_log.details == {
            "last_event_time": "2024-01-15T10:00:00+00:00",
            "added": ["alice", "bob"],
        }

    async def test_finish(self, db_session):
        task_log = await TaskLog.start(TaskLogRepository(db_session), "gitlab-user-import")

        await task_log.finish()

        assert task_log.completion == 100
        assert task_log.entry.finished_at is not None
        assert task_log.entry.failed is False

    async def test_abort(self, db_session):
        task_log = await TaskLog.start(TaskLogRepository(db_session), "gitlab-user-import")

        await task_log.abort(RuntimeError("boom"))

        assert task_log.entry.failed is True
        assert task_log.entry.error == "RuntimeError: boom"
