"""
Git-based reconciliation of work item replicas.

Snapshots travel on a dedicated ref (by default `refs/worklog/data`) that
is fetched into a private tracking namespace and pushed from a disposable
worktree, so the user's checkout, index and branches are never touched.

Example:
    >>> from worklog.core.sync import GitTarget, SyncService
    >>> service = SyncService(store, Path(".worklog/worklog-data.jsonl"))
    >>> result = service.sync(GitTarget())
    >>> if result.conflict_details:
    ...     print(f"Resolved {len(result.conflict_details)} conflicts")
"""

from worklog.core.sync.fetch import (
    FetchOutcome,
    RemoteFetcher,
    RemoteFetchError,
    remote_ref_name,
    remote_tracking_ref,
)
from worklog.core.sync.git import GitError, NotAGitRepositoryError
from worklog.core.sync.merge import (
    MergeResult,
    merge_comments,
    merge_dependency_edges,
    merge_work_items,
)
from worklog.core.sync.models import (
    DEFAULT_GIT_BRANCH,
    DEFAULT_GIT_REMOTE,
    GitTarget,
    PushResult,
    SyncResult,
)
from worklog.core.sync.service import SyncService
from worklog.core.sync.transport import (
    PushError,
    PushRejectedError,
    SnapshotTransport,
    TransportError,
    WorktreeSetupError,
)

__all__ = [
    # Models
    "GitTarget",
    "PushResult",
    "SyncResult",
    "DEFAULT_GIT_REMOTE",
    "DEFAULT_GIT_BRANCH",
    # Merge
    "MergeResult",
    "merge_work_items",
    "merge_comments",
    "merge_dependency_edges",
    # Transport
    "FetchOutcome",
    "RemoteFetcher",
    "SnapshotTransport",
    "SyncService",
    "remote_ref_name",
    "remote_tracking_ref",
    # Errors
    "GitError",
    "NotAGitRepositoryError",
    "RemoteFetchError",
    "TransportError",
    "WorktreeSetupError",
    "PushError",
    "PushRejectedError",
]
