"""GitLab transport exceptions."""


class GitLabClientError(Exception):
    """Base exception for GitLab transport errors.

    Attributes:
        status_code: HTTP status of the failed response, if any
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitLabAuthenticationError(GitLabClientError):
    """Raised when the token is missing or rejected (401/403)."""

    pass


class GitLabRetryableError(GitLabClientError):
    """Raised when a request still fails after all attempts (429, 5xx, network).

    The import run records the event as a failure so that
    `storymirror sync retry` can replay it later.
    """

    pass


class GitLabNotFoundError(GitLabClientError):
    """Raised when a resource is not found (404)."""

    pass
