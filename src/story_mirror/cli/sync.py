"""Sync commands for Story Mirror."""

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from story_mirror.cli.common import (
    OutputFormatOption,
    ProjectArgument,
    RepoArgument,
    RepoFilterOption,
    ServerArgument,
    console,
    load_server,
    load_target,
    print_json,
    run_async_command,
)
from story_mirror.db import ImportFailureRepository, ServerRepository, get_session
from story_mirror.gitlab import GitLabTransport
from story_mirror.gitlab.sync import (
    ActivityLogImporter,
    EventDispatcher,
    FailureRetryService,
    ImportContext,
    RetryResult,
)
from story_mirror.gitlab.sync.milestone_importer import MilestoneImporter
from story_mirror.gitlab.sync.repo_importer import RepoImporter
from story_mirror.gitlab.sync.user_importer import UserImporter
from story_mirror.schemas import GitLabSystemHookEvent, OutputFormat

app = typer.Typer(help="Import activity from GitLab")

PayloadArgument = Annotated[
    Path,
    typer.Argument(
        exists=True,
        dir_okay=False,
        readable=True,
        help="File holding the webhook request body (JSON)",
    ),
]


def _read_payload(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] {path} is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(payload, dict):
        console.print(f"[red]Error:[/red] {path} does not hold a JSON object")
        raise typer.Exit(1)
    return payload


def _print_run(result: dict[str, Any], title: str) -> None:
    """Print the outcome of an activity-log run."""
    if not result.get("success", True):
        console.print(f"[red]{title} aborted:[/red] {result.get('error')}")
        raise typer.Exit(1)
    console.print(f"[bold]{title}[/bold]")
    console.print()
    console.print(f"  Fetched:    {result.get('fetched', 0)}")
    console.print(f"  [green]Imported:[/green]   {result.get('processed', 0)}")
    console.print(f"  [dim]Skipped:[/dim]    {result.get('skipped', 0)}")
    failed = result.get("failed", 0)
    if failed:
        console.print(f"  [red]Failed:[/red]     {failed}")
    if result.get("last_event_time"):
        console.print(f"  Last event: {result['last_event_time']}")
    if failed:
        console.print()
        console.print("[bold red]Failed events (retry with: storymirror sync retry):[/bold red]")
        for key in result.get("failed_events", [])[:20]:
            console.print(f"  {key}")


@app.command("users")
def sync_users(
    server_id: ServerArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Import the user accounts of a GitLab server.

    Examples:
        storymirror sync users 1
        storymirror sync users 1 --format json
    """

    async def _sync() -> dict[str, Any]:
        async with get_session() as session:
            server = await load_server(session, server_id)
            async with GitLabTransport(server) as transport:
                users = await UserImporter(ImportContext(session, transport)).import_users()
                return {
                    "server": server.name,
                    "users": [
                        {"id": user["id"], "username": user["username"], "disabled": user["disabled"]}
                        for user in users
                    ],
                }

    result = run_async_command(_sync(), error_prefix="User import failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return

    users = result["users"]
    disabled = sum(1 for user in users if user["disabled"])
    console.print(f"[bold]Imported {len(users)} users from {result['server']}[/bold]")
    if disabled:
        console.print(f"  [dim]{disabled} disabled[/dim]")


@app.command("repos")
def sync_repos(
    server_id: ServerArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Import the projects of a GitLab server as repos.

    Examples:
        storymirror sync repos 1
    """

    async def _sync() -> dict[str, Any]:
        async with get_session() as session:
            server = await load_server(session, server_id)
            async with GitLabTransport(server) as transport:
                repos = await RepoImporter(ImportContext(session, transport)).import_repositories()
                return {
                    "server": server.name,
                    "repos": [
                        {"id": repo["id"], "name": repo["name"], "deleted": repo["deleted"]}
                        for repo in repos
                    ],
                }

    result = run_async_command(_sync(), error_prefix="Repo import failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return

    console.print(f"[bold]Imported {len(result['repos'])} repos from {result['server']}[/bold]")
    for repo in result["repos"]:
        marker = " [dim](deleted)[/dim]" if repo["deleted"] else ""
        console.print(f"  #{repo['id']} {repo['name']}{marker}")


@app.command("events")
def sync_events(
    repo_id: RepoArgument,
    project_id: ProjectArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Import new activity-log entries of a repo into a project.

    Resumes after the last event imported by the previous run.

    Examples:
        storymirror sync events 4 2
        storymirror -v sync events 4 2  # Debug logging
    """

    async def _sync() -> dict[str, Any]:
        async with get_session() as session:
            server, repo, project = await load_target(session, repo_id, project_id)
            async with GitLabTransport(server) as transport:
                importer = ActivityLogImporter(ImportContext(session, transport))
                result = await importer.process_new_events(repo, project)
                return result.to_dict()

    result = run_async_command(_sync(), error_prefix="Event import failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    _print_run(result, "Activity Log Import Complete")


@app.command("hook")
def sync_hook(
    repo_id: RepoArgument,
    project_id: ProjectArgument,
    payload_file: PayloadArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Import a project webhook delivery.

    Examples:
        storymirror sync hook 4 2 issue-hook.json
    """
    payload = _read_payload(payload_file)

    async def _sync() -> dict[str, Any]:
        async with get_session() as session:
            server, repo, project = await load_target(session, repo_id, project_id)
            async with GitLabTransport(server) as transport:
                importer = ActivityLogImporter(ImportContext(session, transport))
                result = await importer.import_hook_event(repo, project, payload)
                return result.to_dict()

    result = run_async_command(_sync(), error_prefix="Hook import failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    _print_run(result, "Webhook Import Complete")


@app.command("system-hook")
def sync_system_hook(
    server_id: ServerArgument,
    payload_file: PayloadArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """React to a GitLab system hook (project or user lifecycle).

    Examples:
        storymirror sync system-hook 1 project-create.json
    """
    payload = _read_payload(payload_file)

    async def _sync() -> dict[str, Any]:
        hook = GitLabSystemHookEvent.model_validate(payload)
        async with get_session() as session:
            server = await load_server(session, server_id)
            async with GitLabTransport(server) as transport:
                dispatcher = EventDispatcher(ImportContext(session, transport))
                documents = await dispatcher.dispatch_system_hook(hook)
                return {"event_name": hook.event_name, "reimported": len(documents)}

    result = run_async_command(_sync(), error_prefix="System hook failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    if result["reimported"]:
        console.print(f"[bold]{result['event_name']}:[/bold] re-imported {result['reimported']} records")
    else:
        console.print(f"[dim]{result['event_name']}: ignored[/dim]")


@app.command("milestones")
def sync_milestones(
    repo_id: RepoArgument,
    project_id: ProjectArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Refresh the milestone stories of a repo.

    Examples:
        storymirror sync milestones 4 2
    """

    async def _sync() -> dict[str, Any]:
        async with get_session() as session:
            server, repo, project = await load_target(session, repo_id, project_id)
            async with GitLabTransport(server) as transport:
                importer = MilestoneImporter(ImportContext(session, transport))
                results = await importer.update_milestones(repo, project)
                return {"results": [result.to_dict() for result in results]}

    result = run_async_command(_sync(), error_prefix="Milestone import failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    results = result["results"]
    if not results:
        console.print("[dim]Milestones are up to date[/dim]")
        return
    console.print(f"[bold]Updated {len(results)} milestone stories[/bold]")
    for item in results:
        console.print(f"  story #{item.get('id')}: {item['action']}")


@app.command("retry")
def sync_retry(
    repo_id: RepoFilterOption = None,
    max_items: Annotated[
        int | None,
        typer.Option(
            "--max",
            "-m",
            help="Maximum number of failures to retry per server",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Preview what would be retried without making changes",
        ),
    ] = False,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Retry previously failed event imports.

    Replays the stored payloads of pending failures on every active server.

    Examples:
        storymirror sync retry                # Retry all pending failures
        storymirror sync retry --repo 4       # Retry failures of one repo
        storymirror sync retry --max 10       # Retry up to 10 failures
        storymirror sync retry --dry-run      # Preview without changes
    """

    async def _retry() -> dict[str, Any]:
        total = RetryResult()
        async with get_session() as session:
            for server in await ServerRepository(session).get_active("gitlab"):
                async with GitLabTransport(server) as transport:
                    service = FailureRetryService(ImportContext(session, transport))
                    result = await service.retry_failures(
                        repo_id=repo_id, max_items=max_items, dry_run=dry_run
                    )
                total.total_pending += result.total_pending
                total.succeeded += result.succeeded
                total.failed_again += result.failed_again
                total.marked_permanent += result.marked_permanent
                total.skipped_dry_run += result.skipped_dry_run
                total.duration_seconds += result.duration_seconds
                total.results.extend(result.results)
        return total.to_dict()

    result = run_async_command(_retry(), error_prefix="Retry failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return

    total_pending = result.get("total_pending", 0)
    if total_pending == 0:
        console.print("[dim]No pending failures to retry[/dim]")
        return

    prefix = "[dim](dry-run)[/dim] " if dry_run else ""
    console.print(f"{prefix}[bold]Retry Results[/bold]")
    console.print()
    console.print(f"  Pending failures:   {total_pending}")
    console.print(f"  [green]Succeeded:[/green]          {result.get('succeeded', 0)}")
    console.print(f"  [yellow]Failed again:[/yellow]       {result.get('failed_again', 0)}")
    console.print(f"  [red]Marked permanent:[/red]   {result.get('marked_permanent', 0)}")
    console.print()
    console.print(f"  Duration: {result.get('duration_seconds', 0):.1f}s")

    results = result.get("results", [])
    if results:
        console.print()
        console.print("[bold]Individual Results:[/bold]")
        for item in results[:20]:
            key = item.get("event_key", "?")
            error = item.get("error")
            if item.get("success"):
                console.print(f"  [green]✓[/green] {key}: {item.get('action')}")
            else:
                error_msg = error[:60] + "..." if error and len(error) > 60 else error
                console.print(f"  [red]✗[/red] {key}: {error_msg}")
        if len(results) > 20:
            console.print(f"  ... and {len(results) - 20} more")


@app.command("failures")
def sync_failures(
    repo_id: RepoFilterOption = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Show failed event imports.

    Examples:
        storymirror sync failures
        storymirror sync failures --repo 4 --format json
    """

    async def _stats() -> dict[str, Any]:
        async with get_session() as session:
            failures = ImportFailureRepository(session)
            stats = await failures.get_stats(repo_id)
            pending = await failures.get_pending(repo_id=repo_id, limit=20)
            return {
                "stats": stats,
                "pending": [
                    {
                        "id": failure.id,
                        "repo_id": failure.repo_id,
                        "project_id": failure.project_id,
                        "event_key": failure.event_key,
                        "error_type": failure.error_type,
                        "error_message": failure.error_message,
                        "retry_count": failure.retry_count,
                    }
                    for failure in pending
                ],
            }

    result = run_async_command(_stats(), error_prefix="Failed to read failures")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return

    stats = result["stats"]
    console.print("[bold]Import Failures[/bold]")
    console.print()
    console.print(f"  [yellow]Pending:[/yellow]    {stats.get('pending', 0)}")
    console.print(f"  [green]Resolved:[/green]   {stats.get('resolved', 0)}")
    console.print(f"  [red]Permanent:[/red]  {stats.get('permanent', 0)}")
    console.print(f"  Total:      {stats.get('total', 0)}")
    if result["pending"]:
        console.print()
        console.print("[bold]Pending:[/bold]")
        for item in result["pending"]:
            message = item["error_message"][:60]
            console.print(
                f"  repo #{item['repo_id']} {item['event_key']} "
                f"(retries: {item['retry_count']}): {item['error_type']}: {message}"
            )
