"""
Worklog CLI - Dependency commands.
"""

from pathlib import Path

import typer
from rich.console import Console

from worklog.cli.errors import ExitCode, print_error
from worklog.cli.sync import open_store
from worklog.core.config import load_config
from worklog.core.items.store import ItemNotFoundError

console = Console()
app = typer.Typer(
    name="dep",
    help="Manage dependency edges between work items",
    no_args_is_help=True,
)


@app.command()
def add(
    item_id: str = typer.Argument(..., help="Work item that has the dependency"),
    depends_on_id: str = typer.Argument(..., help="Work item it depends on"),
) -> None:
    """
    Record that ITEM_ID depends on DEPENDS_ON_ID.

    Example:
        worklog dep add WI-0LX3K9A2B WI-0LX3K9C7D
    """
    project_dir = Path.cwd()
    store = open_store(load_config(project_dir), project_dir)

    try:
        store.add_dependency(item_id, depends_on_id)
    except ItemNotFoundError as e:
        print_error(f"Work item not found: {e.args[0]}")
        raise typer.Exit(ExitCode.USER_ERROR)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ExitCode.USER_ERROR)

    console.print(f"[green]✓[/green] Added dependency: {item_id} depends on {depends_on_id}")


@app.command()
def rm(
    item_id: str = typer.Argument(..., help="Work item that has the dependency"),
    depends_on_id: str = typer.Argument(..., help="Work item it depends on"),
) -> None:
    """Remove the edge ITEM_ID -> DEPENDS_ON_ID if present."""
    project_dir = Path.cwd()
    store = open_store(load_config(project_dir), project_dir)

    if store.remove_dependency(item_id, depends_on_id):
        console.print(
            f"[green]✓[/green] Removed dependency: {item_id} depends on {depends_on_id}"
        )
    else:
        console.print(f"[yellow]No dependency found: {item_id} depends on {depends_on_id}[/yellow]")
