"""
Data models for the sync service.

Defines Pydantic models for sync targets and the results of push and
full sync passes.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from worklog.core.items.models import ConflictDetail

DEFAULT_GIT_REMOTE = "origin"
DEFAULT_GIT_BRANCH = "refs/worklog/data"


class GitTarget(BaseModel):
    """
    Where snapshots are exchanged.

    `branch` is either a short branch name ("worklog-data") or a fully
    qualified ref ("refs/worklog/data"). A fully qualified ref outside
    refs/heads keeps the data out of branch listings and PR banners.
    """

    model_config = ConfigDict(frozen=True)

    remote: str = Field(default=DEFAULT_GIT_REMOTE, description="Name of the git remote")
    branch: str = Field(default=DEFAULT_GIT_BRANCH, description="Branch name or full ref")

    @property
    def is_explicit_ref(self) -> bool:
        return self.branch.startswith("refs/")

    def __str__(self) -> str:
        return f"{self.remote}:{self.branch}"


class PushResult(BaseModel):
    """Outcome of pushing a snapshot to its dedicated ref."""

    committed: bool = Field(default=False, description="Whether a new commit was created")
    pushed: bool = Field(default=False, description="Whether a commit was pushed")
    commit_sha: str | None = Field(default=None, description="SHA of the pushed commit")
    message: str = Field(default="", description="Human-readable result message")


class SyncResult(BaseModel):
    """
    Result of one reconciliation pass.

    Provides detailed feedback about what happened during the sync.
    """

    target: GitTarget
    dry_run: bool = False

    # Merge counts
    items_added: int = 0
    items_updated: int = 0
    items_unchanged: int = 0
    comments_added: int = 0
    comments_unchanged: int = 0
    edges_added: int = 0
    total_items: int = 0
    total_comments: int = 0
    total_edges: int = 0

    conflicts: list[str] = Field(
        default_factory=list,
        description="Human-readable conflict lines",
    )
    conflict_details: list[ConflictDetail] = Field(
        default_factory=list,
        description="Structured field-level conflict report",
    )

    # Remote side
    remote_found: bool = Field(default=False, description="Whether remote snapshot data existed")
    fetch_error: str | None = Field(
        default=None,
        description="Why the remote could not be fetched (sync ran local-only)",
    )

    # Push
    pushed: bool = False
    commit_sha: str | None = None
    push_error: str | None = Field(
        default=None,
        description="Why the push failed (local state is still merged)",
    )

    # Timing
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    @property
    def success(self) -> bool:
        return self.fetch_error is None and self.push_error is None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate operation duration in seconds."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return delta.total_seconds()
        return None

    def summary(self) -> str:
        """Generate a human-readable summary of the result."""
        if self.fetch_error:
            return f"sync ran local-only: {self.fetch_error}"
        if self.push_error:
            return f"sync merged locally but push failed: {self.push_error}"

        parts = ["sync succeeded"]
        if self.items_added or self.items_updated:
            parts.append(f"{self.items_added} items added, {self.items_updated} updated")
        if self.comments_added:
            parts.append(f"{self.comments_added} comments added")
        if self.edges_added:
            parts.append(f"{self.edges_added} dependencies added")
        if self.conflict_details:
            parts.append(f"{len(self.conflict_details)} conflicts resolved")
        if self.commit_sha:
            parts.append(f"pushed {self.commit_sha[:8]}")
        elif self.dry_run:
            parts.append("dry run")
        return ", ".join(parts)
