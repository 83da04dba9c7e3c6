"""Common CLI option factories and helpers.

This module centralizes reusable CLI options and the lookups every sync
command starts with.

It also provides:
- `run_async_command`: Unified async execution with error handling for CLI commands
- `load_target`: Resolve a repo/project pair and the server behind the repo
- `print_json`: JSON output shared by all commands
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db import Project, ProjectRepository, RepoRepository, Server, ServerRepository
from story_mirror.external import DataNotFoundError, Document, find_link_by_server_type
from story_mirror.schemas import OutputFormat

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from synchronous CLI command with unified error handling.

    Uses asyncio.run() for clean event loop management. Catches exceptions,
    prints user-friendly error messages, and exits with code 1.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine

    Raises:
        typer.Exit: Re-raised from deliberate exits, or raised with code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        # Re-raise deliberate exits (e.g., from validation helpers)
        raise
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {e}")
        raise typer.Exit(1) from None


def print_json(data: Any) -> None:
    """Print a result dictionary as JSON."""
    console.print_json(json.dumps(data, default=str))


# Typer requires function calls as default arguments, which triggers B008.
# Using Annotated with a centralized type alias keeps the noqa in one place.

OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
    ),
]
"""Output format option type for CLI commands.

Usage:
    def command(output_format: OutputFormatOption = OutputFormat.TEXT):
"""

DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Don't write to database, just show what would happen",
    ),
]
"""Dry-run option type for CLI commands."""

# -----------------------------------------------------------------------------
# Target Argument/Option Factories
# -----------------------------------------------------------------------------

ServerArgument = Annotated[
    int,
    typer.Argument(help="ID of the GitLab server"),
]
"""Required positional server argument."""

RepoArgument = Annotated[
    int,
    typer.Argument(help="ID of the repo"),
]
"""Required positional repo argument."""

ProjectArgument = Annotated[
    int,
    typer.Argument(help="ID of the project the stories belong to"),
]
"""Required positional project argument."""

RepoFilterOption = Annotated[
    int | None,
    typer.Option(
        "--repo",
        "-r",
        help="Filter by repo ID",
    ),
]
"""Optional repo filtering option."""


# -----------------------------------------------------------------------------
# Target Lookups
# -----------------------------------------------------------------------------


async def load_server(session: AsyncSession, server_id: int) -> Server:
    """Get an enabled server by ID.

    Raises:
        DataNotFoundError: If the server is missing, deleted or disabled
    """
    server = await ServerRepository(session).get_by_id(server_id)
    if server is None or server.deleted:
        raise DataNotFoundError(f"Server #{server_id} not found")
    if server.disabled:
        raise DataNotFoundError(f"Server {server.name!r} is disabled")
    return server


async def load_target(
    session: AsyncSession, repo_id: int, project_id: int
) -> tuple[Server, Document, Project]:
    """Resolve the repo, the project it feeds and the repo's server.

    Raises:
        DataNotFoundError: If any of them is missing, or the project does not
            include the repo
    """
    repo = await RepoRepository(session).get_document(repo_id)
    if repo is None or repo["deleted"]:
        raise DataNotFoundError(f"Repo #{repo_id} not found")
    project = await ProjectRepository(session).get_by_id(project_id)
    if project is None or project.deleted:
        raise DataNotFoundError(f"Project #{project_id} not found")
    if repo_id not in (project.repo_ids or []):
        raise DataNotFoundError(f"Project {project.name!r} does not include repo #{repo_id}")
    link = find_link_by_server_type(repo, "gitlab")
    if link is None:
        raise DataNotFoundError(f"Repo #{repo_id} is not linked to a GitLab server")
    server = await load_server(session, link["server_id"])
    return server, repo, project
