"""GitLab sync module - activity log to stories and back.

Services:
- ActivityLogImporter: Replays a project's activity log, one savepoint per event
- EventDispatcher: Routes events and webhooks to the object importers
- FailureRetryService: Replays events whose import failed
- IssueExporter: Creates, updates, moves and removes issues for stories
- CommitManager: Commits an activity-log replay in batches of events
"""

from .commit_manager import CommitManager
from .context import ImportContext, IssueNumberCache
from .dispatcher import EventDispatcher, normalize
from .enums import ImportAction, TaskAction
from .event_importer import ActivityLogImporter
from .issue_exporter import IssueExporter
from .push_decorator import DescriptionCache
from .results import EventRunResult, ImportResult
from .retry_service import FailureRetryService, RetryResult
from .task_log import TaskLog

__all__ = [
    # Run driver
    "ActivityLogImporter",
    "EventDispatcher",
    "EventRunResult",
    "ImportAction",
    "ImportContext",
    "ImportResult",
    "normalize",
    # Caches
    "DescriptionCache",
    "IssueNumberCache",
    # Failure retry
    "FailureRetryService",
    "RetryResult",
    # Export
    "IssueExporter",
    # Bookkeeping
    "CommitManager",
    "TaskAction",
    "TaskLog",
]
