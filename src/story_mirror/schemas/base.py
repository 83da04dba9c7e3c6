"""Base schema class and GitLab timestamp parsing."""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict


def _parse_gitlab_time(value: Any) -> Any:
    """Accept webhook timestamps such as ``2020-01-01 10:00:00 UTC``."""
    if isinstance(value, str) and value.endswith(" UTC"):
        return value[: -len(" UTC")].replace(" ", "T") + "+00:00"
    return value


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# Aware UTC datetime parsed from REST (ISO 8601) or webhook timestamps
GitLabDateTime = Annotated[
    datetime,
    BeforeValidator(_parse_gitlab_time),
    AfterValidator(_as_utc),
]


class GitLabModel(BaseModel):
    """Base class for GitLab payloads.

    Unknown fields are ignored since GitLab adds fields between releases.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
