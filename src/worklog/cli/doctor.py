"""
Worklog CLI - Doctor command.

Runs integrity checks over the local store. Checks only report; nothing
is modified.
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from worklog.cli.errors import ExitCode
from worklog.cli.sync import open_store
from worklog.core.config import load_config
from worklog.core.doctor import DoctorSeverity, validate_dependency_edges

app = typer.Typer(
    name="doctor",
    help="Check local work item data for integrity problems",
    no_args_is_help=False,
)

console = Console()


@app.callback(invoke_without_command=True)
def doctor(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output findings as JSON",
    ),
) -> None:
    """
    Check dependency edges for references to unknown work items.

    Sync keeps dangling edges so no replica loses data; this command
    reports them so they can be cleaned up deliberately.

    Examples:
        worklog doctor           # Human-readable report
        worklog doctor --json    # Findings as JSON
    """
    if ctx.invoked_subcommand is not None:
        return

    project_dir = Path.cwd()
    config = load_config(project_dir)
    store = open_store(config, project_dir)

    findings = validate_dependency_edges(store.get_all_items(), store.get_all_dependency_edges())
    has_errors = any(f.severity == DoctorSeverity.ERROR for f in findings)

    if json_output:
        console.print(
            json.dumps([f.model_dump(mode="json") for f in findings], indent=2),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
    elif not findings:
        console.print("[green]✓[/green] No problems found")
    else:
        table = Table(title="Doctor findings")
        table.add_column("Severity")
        table.add_column("Check", style="cyan")
        table.add_column("Item")
        table.add_column("Message")
        for finding in findings:
            color = "red" if finding.severity == DoctorSeverity.ERROR else "yellow"
            table.add_row(
                f"[{color}]{finding.severity.value}[/{color}]",
                finding.check_id,
                finding.item_id,
                escape(finding.message),
            )
        console.print(table)
        console.print(f"\n[red]✗[/red] {len(findings)} problem(s) found")

    if has_errors:
        raise typer.Exit(ExitCode.GENERAL_ERROR)
