"""
Worklog CLI - Export and import commands.

Move the local store to and from a snapshot file without touching git.
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from worklog.cli.errors import ExitCode, print_corrupted_snapshot_error, print_error
from worklog.cli.sync import open_store
from worklog.core.config import load_config
from worklog.core.items import SnapshotCorruptedError
from worklog.core.items.jsonl import export_to_jsonl, import_from_jsonl

console = Console()


def _report(action: str, items: int, comments: int, edges: int, path: Path, json_output: bool):
    message = f"{action} {items} work items and {comments} comments"
    if json_output:
        console.print(
            json.dumps(
                {
                    "success": True,
                    "message": message,
                    "items_count": items,
                    "comments_count": comments,
                    "edges_count": edges,
                    "file": str(path),
                },
                indent=2,
            ),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
    else:
        preposition = "to" if action == "Exported" else "from"
        console.print(f"[green]✓[/green] {message} {preposition} {escape(str(path))}")


def export_cmd(
    file: str | None = typer.Option(
        None,
        "--file",
        "-f",
        help="Output file (defaults to the configured data file)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output the result as JSON",
    ),
) -> None:
    """
    Export work items, comments and dependencies to a JSONL snapshot.

    Examples:
        worklog export                     # Write the configured data file
        worklog export -f backup.jsonl     # Write somewhere else
    """
    project_dir = Path.cwd()
    config = load_config(project_dir)
    store = open_store(config, project_dir)
    path = project_dir / (file or config.data_file)

    items = store.get_all_items()
    comments = store.get_all_comments()
    edges = store.get_all_dependency_edges()
    export_to_jsonl(items, comments, edges, path)

    _report("Exported", len(items), len(comments), len(edges), path, json_output)


def import_cmd(
    file: str | None = typer.Option(
        None,
        "--file",
        "-f",
        help="Input file (defaults to the configured data file)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output the result as JSON",
    ),
) -> None:
    """
    Replace the local store with the contents of a JSONL snapshot.

    Examples:
        worklog import                     # Read the configured data file
        worklog import -f backup.jsonl     # Restore from a backup
    """
    project_dir = Path.cwd()
    config = load_config(project_dir)
    path = project_dir / (file or config.data_file)

    try:
        snapshot = import_from_jsonl(path)
    except FileNotFoundError:
        print_error(f"Snapshot file not found: {path}", solution="worklog export")
        raise typer.Exit(ExitCode.USER_ERROR)
    except SnapshotCorruptedError as e:
        print_corrupted_snapshot_error(str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    store = open_store(config, project_dir)
    store.import_items(snapshot.items, snapshot.edges)
    store.import_comments(snapshot.comments)

    _report(
        "Imported",
        len(snapshot.items),
        len(snapshot.comments),
        len(snapshot.edges),
        path,
        json_output,
    )
