"""
Standardized error handling and exit codes for the worklog CLI.
"""

from enum import IntEnum

from rich.console import Console
from rich.markup import escape

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for worklog CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """A sync phase or check failed."""

    USER_ERROR = 2
    """User configuration or environment error (actionable by user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Not a git repository",
        ...     reason="worklog exchanges snapshots through a git remote",
        ...     solution="git init",
        ... )
    """
    console.print(f"[red]Error:[/red] {escape(problem)}")

    if reason:
        console.print(f"[dim]{escape(reason)}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {escape(solution)}")


def print_not_a_repository_error(path: str) -> None:
    print_error(
        f"{path} is not inside a git repository",
        reason="worklog exchanges snapshots through a git remote",
        solution="git init && git remote add origin <url>",
    )


def print_corrupted_snapshot_error(detail: str) -> None:
    print_error(
        "Remote snapshot could not be decoded",
        reason=detail,
        solution="inspect the snapshot ref with `git show <ref>:.worklog/worklog-data.jsonl`",
    )
