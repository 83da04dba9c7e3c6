"""Exceptions raised while reconciling external data."""


class ExternalDataError(Exception):
    """Base exception for link and property reconciliation errors."""

    pass


class ConflictingLinkError(ExternalDataError):
    """Raised when an object already has a different link to the same server.

    Indicates corrupted identity data; a run that hits this should stop
    rather than compound the damage.
    """

    def __init__(self, server_id: int, existing: dict, incoming: dict) -> None:
        super().__init__(
            f"Object already linked to server {server_id} with a conflicting link"
        )
        self.server_id = server_id
        self.existing = existing
        self.incoming = incoming


class ParentNotLinkedError(ExternalDataError):
    """Raised when a child link is derived from a parent with no link to the server."""

    pass


class UnknownPolicyError(ExternalDataError, ValueError):
    """Raised for an overwrite policy that is not always, never, or match-previous."""

    pass


class ObjectMovedError(ExternalDataError):
    """Raised when the external entity was moved elsewhere (e.g. issue moved to another repo)."""

    def __init__(self, message: str = "Object moved") -> None:
        super().__init__(message)


class DataNotFoundError(ExternalDataError):
    """Raised when a local record an operation depends on is missing or disabled."""

    pass
