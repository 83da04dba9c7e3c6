"""Main CLI application for Story Mirror."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from story_mirror import __version__
from story_mirror.cli import db as db_cmd
from story_mirror.cli import export as export_cmd
from story_mirror.cli import sync as sync_cmd
from story_mirror.config import get_settings
from story_mirror.logging import setup_logging

app = typer.Typer(
    name="storymirror",
    help="Mirror GitLab activity into project stories and export stories as issues.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"storymirror version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """Story Mirror - GitLab activity as stories."""
    settings = get_settings()
    log_config = settings.logging

    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


# Register subcommands
app.add_typer(db_cmd.app, name="db")
app.add_typer(sync_cmd.app, name="sync")
app.add_typer(export_cmd.app, name="export")


if __name__ == "__main__":
    app()
