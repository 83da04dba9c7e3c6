"""GitLab adapter.

This module provides:
- GitLabTransport: Async REST client with retries and Sudo writes
- Exceptions: GitLabClientError and its subclasses
- Sync: importers, the activity-log run driver, the retry service and the
  issue exporter
"""

from .exceptions import (
    GitLabAuthenticationError,
    GitLabClientError,
    GitLabNotFoundError,
    GitLabRetryableError,
)
from .transport import GitLabTransport
from .sync import (
    ActivityLogImporter,
    EventDispatcher,
    EventRunResult,
    FailureRetryService,
    ImportContext,
    ImportResult,
    IssueExporter,
    RetryResult,
)

__all__ = [
    # Transport
    "GitLabTransport",
    # Exceptions
    "GitLabAuthenticationError",
    "GitLabClientError",
    "GitLabNotFoundError",
    "GitLabRetryableError",
    # Sync
    "ActivityLogImporter",
    "EventDispatcher",
    "EventRunResult",
    "FailureRetryService",
    "ImportContext",
    "ImportResult",
    "IssueExporter",
    "RetryResult",
]
