"""
Worklog CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from worklog import __version__
from worklog.cli import dep, doctor, snapshot, sync
from worklog.core.config.env import load_layered_env

app = typer.Typer(
    name="worklog",
    help="Git-backed work item tracker",
    no_args_is_help=False,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for CLI commands.

    Args:
        debug: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    Worklog - work items that travel with your git repository.

    Every clone keeps its own copy of work items, comments and dependencies
    and reconciles with peers through a dedicated ref on the git remote.

    Examples:
        worklog sync                 # Merge with the remote and push
        worklog sync --dry-run       # Preview what would change
        worklog doctor               # Check dependency integrity
    """
    setup_logging(debug)

    # Precedence: OS env > project .env > user .env
    load_layered_env()

    ctx.obj = {"debug": debug}

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


app.add_typer(sync.app, name="sync")
app.add_typer(doctor.app, name="doctor")
app.add_typer(dep.app, name="dep")
app.command(name="export")(snapshot.export_cmd)
app.command(name="import")(snapshot.import_cmd)


@app.command()
def version() -> None:
    """Show worklog version and exit."""
    console.print(f"worklog version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
