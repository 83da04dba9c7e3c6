"""Export commands for Story Mirror."""

from typing import Annotated, Any

import typer

from story_mirror.cli.common import (
    OutputFormatOption,
    ProjectArgument,
    console,
    print_json,
    run_async_command,
)
from story_mirror.db import ProjectRepository, get_session
from story_mirror.external import DataNotFoundError
from story_mirror.gitlab.sync import IssueExporter
from story_mirror.schemas import OutputFormat

app = typer.Typer(help="Export stories to GitLab")


@app.command("issue")
def export_issue(
    project_id: ProjectArgument,
    story_id: Annotated[int, typer.Argument(help="ID of the story to export")],
    user_id: Annotated[int, typer.Option("--user", "-u", help="ID of the user exporting the story")],
    repo_id: Annotated[
        int | None,
        typer.Option("--repo", "-r", help="Destination repo (omit to remove the issue)"),
    ] = None,
    title: Annotated[str | None, typer.Option("--title", help="Issue title")] = None,
    labels: Annotated[
        list[str] | None,
        typer.Option("--label", "-l", help="Issue label (repeatable)"),
    ] = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Create, update, move or remove the issue of a story.

    Examples:
        storymirror export issue 2 118 --repo 4 --user 12 --title "Crash on save" -l bug
        storymirror export issue 2 118 --user 12   # Remove the issue again
    """
    options: dict[str, Any] = {}
    if title is not None:
        options["title"] = title
    if labels is not None:
        options["labels"] = labels

    async def _export() -> dict[str, Any]:
        async with get_session() as session:
            project = await ProjectRepository(session).get_by_id(project_id)
            if project is None or project.deleted:
                raise DataNotFoundError(f"Project #{project_id} not found")
            async with IssueExporter(session) as exporter:
                result = await exporter.export_story(project, story_id, repo_id, user_id, options)
                return result.to_dict()

    result = run_async_command(_export(), error_prefix="Export failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
        return
    console.print(f"[bold]{result['action'].title()}[/bold] issue of story #{story_id}")
