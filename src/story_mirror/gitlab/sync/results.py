"""Result objects for import operations.

Structured results give the run driver, the retry service and the CLI one
shape to report on, whatever kind of object was imported.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from story_mirror.external import Document

from .enums import ImportAction


@dataclass
class ImportResult:
    """Outcome of importing one external object (or one event)."""

    object_type: str
    """Kind of row affected: story, reaction, user, repo, commit."""

    action: ImportAction
    """What happened to the row."""

    document: Document | None = None
    """The row as stored after the import (None when skipped)."""

    reason: str | None = None
    """Why the object was skipped."""

    error: Exception | None = None
    """Exception if the import failed."""

    children: list[ImportResult] = field(default_factory=list)
    """Results of dependent imports (assignments, notes)."""

    @property
    def success(self) -> bool:
        """Check if the import completed without errors."""
        return self.error is None

    @property
    def wrote(self) -> bool:
        """True if this import or one of its dependents wrote to storage."""
        if self.action in (ImportAction.CREATED, ImportAction.UPDATED, ImportAction.DELETED):
            return True
        return any(child.wrote for child in self.children)

    def to_dict(self) -> dict[str, object]:
        """Convert to a dictionary for JSON output."""
        result: dict[str, object] = {
            "success": self.success,
            "object_type": self.object_type,
            "action": "error" if self.error else self.action.value,
        }
        if self.document is not None:
            result["id"] = self.document.get("id")
            if "type" in self.document:
                result["type"] = self.document["type"]
        if self.reason:
            result["reason"] = self.reason
        if self.error:
            result["error"] = str(self.error)
            result["error_type"] = type(self.error).__name__
        if self.children:
            result["children"] = [child.to_dict() for child in self.children]
        return result

    @classmethod
    def from_saved(
        cls, object_type: str, before: Document | None, saved: Document | None
    ) -> ImportResult:
        """Classify the result of ``save_if_changed``.

        Args:
            object_type: Kind of row
            before: Row as found before the import (None when new)
            saved: Row returned by the save (None when nothing changed)
        """
        if saved is None:
            return cls(object_type, ImportAction.UNCHANGED, document=before)
        if before is None:
            return cls(object_type, ImportAction.CREATED, document=saved)
        return cls(object_type, ImportAction.UPDATED, document=saved)

    @classmethod
    def skipped(cls, object_type: str, reason: str) -> ImportResult:
        """Create a result for a dropped event."""
        return cls(object_type, ImportAction.SKIPPED, reason=reason)

    @classmethod
    def from_error(cls, object_type: str, error: Exception) -> ImportResult:
        """Create a result representing a failed import."""
        return cls(object_type, ImportAction.SKIPPED, error=error)


@dataclass
class EventRunResult:
    """Outcome of one activity-log replay (or webhook delivery)."""

    fetched: int = 0
    """Events returned by GitLab, including ones already imported."""

    processed: int = 0
    """Events imported successfully (including no-op replays)."""

    skipped: int = 0
    """Events dropped by the dispatcher."""

    failed: int = 0
    """Events that raised and were recorded for retry."""

    failed_events: list[str] = field(default_factory=list)
    """Keys of the failed events."""

    last_event_time: datetime | None = None
    """Resumption cursor after the run."""

    aborted: Exception | None = None
    """Error that stopped the run (conflicting link)."""

    @property
    def success(self) -> bool:
        """True if the run completed, even with per-event failures."""
        return self.aborted is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for JSON output."""
        result: dict[str, Any] = {
            "success": self.success,
            "fetched": self.fetched,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "failed_events": list(self.failed_events),
            "last_event_time": self.last_event_time.isoformat() if self.last_event_time else None,
        }
        if self.aborted is not None:
            result["error"] = str(self.aborted)
            result["error_type"] = type(self.aborted).__name__
        return result
