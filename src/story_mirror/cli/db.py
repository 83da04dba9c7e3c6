"""Database commands for Story Mirror."""

from typing import Annotated, Any

import typer

from story_mirror.cli.common import (
    OutputFormatOption,
    console,
    print_json,
    run_async_command,
)
from story_mirror.db import Project, Server, create_tables, get_session
from story_mirror.db.repositories import ProjectRepository, ServerRepository
from story_mirror.schemas import OutputFormat

app = typer.Typer(help="Manage the local database")


@app.command("init")
def db_init() -> None:
    """Create the database tables.

    Deployments that track schema history should run ``alembic upgrade head``
    instead.
    """
    run_async_command(create_tables(), error_prefix="Failed to create tables")
    console.print("[green]Database initialized[/green]")


@app.command("add-server")
def db_add_server(
    name: Annotated[str, typer.Argument(help="Unique name of the server")],
    base_url: Annotated[str, typer.Option("--url", help="Base URL, e.g. https://gitlab.example.com")],
    access_token: Annotated[
        str,
        typer.Option("--token", envvar="STORYMIRROR_GITLAB_TOKEN", help="Admin personal access token"),
    ],
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Register a GitLab server.

    Examples:
        storymirror db add-server gitlab --url https://gitlab.example.com --token glpat-...
    """

    async def _add() -> dict[str, Any]:
        async with get_session() as session:
            servers = ServerRepository(session)
            if await servers.get_by_name(name) is not None:
                console.print(f"[red]Error:[/red] Server {name!r} already exists")
                raise typer.Exit(1)
            server = servers.add(
                Server(
                    type="gitlab",
                    name=name,
                    settings={"base_url": base_url.rstrip("/"), "access_token": access_token},
                )
            )
            await servers.flush()
            return {"id": server.id, "name": server.name}

    result = run_async_command(_add(), error_prefix="Failed to add server")
    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    console.print(f"[green]Added server #{result['id']}:[/green] {result['name']}")


@app.command("add-project")
def db_add_project(
    name: Annotated[str, typer.Argument(help="Unique name of the project")],
    repo_ids: Annotated[
        list[int] | None,
        typer.Option("--repo", "-r", help="Repo feeding the project (repeatable)"),
    ] = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Create a project, or add repos to an existing one.

    Examples:
        storymirror db add-project website --repo 4 --repo 5
    """

    async def _add() -> dict[str, Any]:
        async with get_session() as session:
            projects = ProjectRepository(session)
            existing = await projects.get_where({"name": name})
            if existing:
                project = existing[0]
                project.repo_ids = sorted({*(project.repo_ids or []), *(repo_ids or [])})
            else:
                project = projects.add(Project(name=name, repo_ids=sorted(set(repo_ids or []))))
            await projects.flush()
            return {"id": project.id, "name": project.name, "repo_ids": project.repo_ids}

    result = run_async_command(_add(), error_prefix="Failed to add project")
    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    repos = ", ".join(f"#{repo_id}" for repo_id in result["repo_ids"]) or "none"
    console.print(f"[green]Project #{result['id']}:[/green] {result['name']} (repos: {repos})")
