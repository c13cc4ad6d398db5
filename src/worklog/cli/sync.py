"""
Worklog CLI - Sync command.

Runs one reconciliation pass between the local store and the shared
snapshot ref on a git remote.
"""

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from worklog.cli.errors import (
    ExitCode,
    print_corrupted_snapshot_error,
    print_error,
    print_not_a_repository_error,
)
from worklog.core.config import WorklogConfig, load_config
from worklog.core.items import SnapshotCorruptedError, WorklogStore
from worklog.core.sync import GitError, GitTarget, NotAGitRepositoryError, SyncResult, SyncService
from worklog.core.sync.transport import DEFAULT_COMMIT_MESSAGE

logger = logging.getLogger(__name__)

console = Console()
app = typer.Typer(
    name="sync",
    help="Reconcile local work items with the git remote",
    no_args_is_help=False,
)


def open_store(config: WorklogConfig, project_dir: Path) -> WorklogStore:
    """
    Open the local store, wiring auto-sync when the project enables it.

    The auto-sync callback runs a full sync pass against the configured
    target; failures are logged and never interrupt the local mutation.
    """
    store = WorklogStore(project_dir / config.db_file, prefix=config.prefix)
    if config.auto_sync:
        service = SyncService(store, Path(config.data_file), project_dir=project_dir)

        def auto_sync() -> None:
            try:
                result = service.sync(config.sync_target())
            except (GitError, SnapshotCorruptedError) as e:
                logger.warning("Auto-sync failed: %s", e)
                return
            if not result.success:
                logger.warning("Auto-sync incomplete: %s", result.summary())

        store.set_auto_sync(True, auto_sync)
    return store


def _print_json(data: object) -> None:
    console.print(json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True)


def _print_conflicts(result: SyncResult) -> None:
    table = Table(title="Conflicts resolved", show_lines=False)
    table.add_column("Item", style="cyan")
    table.add_column("Field")
    table.add_column("Local")
    table.add_column("Remote")
    table.add_column("Chosen", style="green")

    for detail in result.conflict_details:
        for field in detail.fields:
            table.add_row(
                detail.item_id,
                field.field,
                escape(str(field.local_value)),
                escape(str(field.remote_value)),
                f"{field.chosen_source} ({escape(field.reason)})",
            )

    console.print(table)


def _print_summary(result: SyncResult, data_file: str) -> None:
    if result.fetch_error:
        console.print(f"[yellow]⚠[/yellow]  Remote unavailable: {escape(result.fetch_error)}")
    elif not result.remote_found:
        console.print(f"[blue]No remote data found on {escape(str(result.target))}[/blue]")

    console.print(
        f"[green]✓[/green] Items: {result.items_added} added, "
        f"{result.items_updated} updated, {result.items_unchanged} unchanged "
        f"({result.total_items} total)"
    )
    console.print(
        f"[green]✓[/green] Comments: {result.comments_added} added "
        f"({result.total_comments} total); dependencies: {result.edges_added} added "
        f"({result.total_edges} total)"
    )

    if result.conflict_details:
        console.print(
            f"[yellow]⚠[/yellow]  Resolved {len(result.conflict_details)} conflicting item(s)"
        )
        _print_conflicts(result)

    if result.dry_run:
        console.print("[dim]Dry run: nothing was written or pushed[/dim]")
        return

    console.print(f"[dim]Snapshot written to {escape(data_file)}[/dim]")
    if result.push_error:
        console.print(f"[red]Push failed:[/red] {escape(result.push_error)}")
        console.print("[dim]→ Local state is merged; run [bold]worklog sync[/bold] to retry[/dim]")
    elif result.commit_sha:
        console.print(f"[green]✓[/green] Pushed {result.commit_sha[:8]} to {result.target}")
    elif result.fetch_error is None:
        console.print("[blue]No changes to push[/blue]")


@app.callback(invoke_without_command=True)
def sync(
    ctx: typer.Context,
    file: str | None = typer.Option(
        None,
        "--file",
        "-f",
        help="Snapshot file (defaults to the configured data file)",
    ),
    git_remote: str | None = typer.Option(
        None,
        "--git-remote",
        help="Git remote holding the shared snapshot",
    ),
    git_branch: str | None = typer.Option(
        None,
        "--git-branch",
        help="Branch name or full ref holding the shared snapshot",
    ),
    no_push: bool = typer.Option(
        False,
        "--no-push",
        help="Merge locally without pushing",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would change without writing or pushing",
    ),
    message: str | None = typer.Option(
        None,
        "--message",
        "-m",
        help="Custom commit message",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output the result as JSON",
    ),
) -> None:
    """
    Sync work items, comments and dependencies with the git remote.

    Fetches the shared snapshot, merges it with the local store, writes the
    merged snapshot file and pushes it back to the dedicated ref.

    Examples:
        worklog sync                              # Full sync with the configured remote
        worklog sync --no-push                    # Merge remote changes only
        worklog sync --dry-run                    # Preview conflicts and counts
        worklog sync --git-branch refs/team/data  # Use another ref
        worklog sync --json                       # Machine-readable result
    """
    if ctx.invoked_subcommand is not None:
        return

    project_dir = Path.cwd()
    config = load_config(project_dir)
    target = GitTarget(
        remote=git_remote or config.sync_remote,
        branch=git_branch or config.sync_branch,
    )
    data_file = file or config.data_file

    store = open_store(config, project_dir)
    service = SyncService(store, Path(data_file), project_dir=project_dir)

    try:
        result = service.sync(
            target,
            push=not no_push,
            dry_run=dry_run,
            message=message or DEFAULT_COMMIT_MESSAGE,
        )
    except NotAGitRepositoryError:
        print_not_a_repository_error(str(project_dir))
        raise typer.Exit(ExitCode.USER_ERROR)
    except SnapshotCorruptedError as e:
        print_corrupted_snapshot_error(str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except GitError as e:
        print_error("Sync failed", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if json_output:
        output = result.model_dump(mode="json")
        output["success"] = result.success
        output["summary"] = result.summary()
        _print_json(output)
    else:
        _print_summary(result, data_file)

    if not result.success:
        raise typer.Exit(ExitCode.GENERAL_ERROR)
