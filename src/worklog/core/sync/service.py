"""
Sync orchestrator.

One reconciliation pass reads the local store, fetches and decodes the
remote snapshot, merges work items, comments and dependency edges, writes
the merged state back into the store and the snapshot file, and pushes the
snapshot to its dedicated ref.
"""

from __future__ import annotations

import logging
from pathlib import Path

from worklog.core.items.jsonl import decode_snapshot, export_to_jsonl
from worklog.core.items.models import Snapshot, utc_now
from worklog.core.items.store import WorklogStore
from worklog.core.sync.fetch import RemoteFetcher, RemoteFetchError
from worklog.core.sync.git import GitError
from worklog.core.sync.merge import (
    merge_comments,
    merge_dependency_edges,
    merge_work_items,
    stable_item_key,
)
from worklog.core.sync.models import GitTarget, SyncResult
from worklog.core.sync.transport import DEFAULT_COMMIT_MESSAGE, SnapshotTransport

logger = logging.getLogger(__name__)


class SyncService:
    """
    Runs reconciliation passes between the local store and a git remote.

    Example:
        >>> store = WorklogStore(Path(".worklog/worklog.db"))
        >>> service = SyncService(store, Path(".worklog/worklog-data.jsonl"))
        >>> result = service.sync(GitTarget(remote="origin", branch="refs/worklog/data"))
        >>> print(result.summary())
    """

    def __init__(
        self,
        store: WorklogStore,
        data_file: Path,
        project_dir: Path | None = None,
        fetcher: RemoteFetcher | None = None,
        transport: SnapshotTransport | None = None,
    ) -> None:
        """
        Initialize the sync service.

        Args:
            store: Local store to reconcile.
            data_file: Snapshot file, relative to project_dir unless absolute.
            project_dir: Directory inside the git repository.
                        Defaults to current working directory.
            fetcher: Remote fetcher (created from project_dir if omitted).
            transport: Snapshot transport (created from project_dir if omitted).
        """
        self.store = store
        self.project_dir = (project_dir or Path.cwd()).resolve()
        self.data_file = data_file if data_file.is_absolute() else self.project_dir / data_file
        self.fetcher = fetcher or RemoteFetcher(self.project_dir)
        self.transport = transport or SnapshotTransport(self.project_dir, fetcher=self.fetcher)

    def sync(
        self,
        target: GitTarget,
        *,
        push: bool = True,
        dry_run: bool = False,
        message: str = DEFAULT_COMMIT_MESSAGE,
    ) -> SyncResult:
        """
        Run one reconciliation pass.

        Args:
            target: Remote and branch or ref holding the shared snapshot.
            push: Whether to push the merged snapshot.
            dry_run: Merge and report only; the store, the snapshot file and
                the remote are left untouched.
            message: Commit message for the snapshot commit.

        Returns:
            SyncResult with counts, conflicts and per-phase errors.

        Raises:
            NotAGitRepositoryError: If project_dir is not inside a git repository.
            SnapshotCorruptedError: If the remote snapshot can't be decoded.
        """
        result = SyncResult(target=target, dry_run=dry_run, started_at=utc_now())

        local_items = self.store.get_all_items()
        local_comments = self.store.get_all_comments()
        local_edges = self.store.get_all_dependency_edges()
        logger.info(
            "Syncing %d items, %d comments, %d dependencies with %s",
            len(local_items),
            len(local_comments),
            len(local_edges),
            target,
        )

        remote = Snapshot()
        content: bytes | None = None
        # Remote tip the merge is based on; the push is leased against it.
        merged_against: str | None = None
        try:
            remote_read = self.fetcher.read_remote(self.data_file, target)
        except RemoteFetchError as e:
            logger.warning("Remote unavailable, syncing local-only: %s", e)
            result.fetch_error = str(e)
        else:
            content = remote_read.content
            merged_against = remote_read.outcome.tip_sha or ""

        if content is not None:
            remote = decode_snapshot(content)
            result.remote_found = True
            logger.info(
                "Remote snapshot has %d items, %d comments, %d dependencies",
                len(remote.items),
                len(remote.comments),
                len(remote.edges),
            )

        item_result = merge_work_items(local_items, remote.items)
        comment_result = merge_comments(local_comments, remote.comments)
        edge_result = merge_dependency_edges(local_edges, remote.edges)

        local_keys = {item.id: stable_item_key(item) for item in local_items}
        for item in item_result.merged:
            previous = local_keys.get(item.id)
            if previous is None:
                result.items_added += 1
            elif previous != stable_item_key(item):
                result.items_updated += 1
            else:
                result.items_unchanged += 1

        local_comment_ids = {c.id for c in local_comments}
        result.comments_added = sum(
            1 for c in comment_result.merged if c.id not in local_comment_ids
        )
        result.comments_unchanged = len(comment_result.merged) - result.comments_added
        local_edge_keys = {e.key for e in local_edges}
        result.edges_added = sum(1 for e in edge_result.merged if e.key not in local_edge_keys)

        result.total_items = len(item_result.merged)
        result.total_comments = len(comment_result.merged)
        result.total_edges = len(edge_result.merged)
        result.conflicts = item_result.conflicts
        result.conflict_details = item_result.conflict_details

        for line in item_result.conflicts:
            logger.debug("Conflict: %s", line)
        if item_result.conflict_details:
            logger.warning(
                "Resolved %d conflicting work item(s)", len(item_result.conflict_details)
            )

        if dry_run:
            logger.info("Dry run: leaving store, snapshot file and remote untouched")
            result.completed_at = utc_now()
            return result

        previous_auto_sync = self.store.auto_sync_enabled
        self.store.set_auto_sync(False)
        try:
            self.store.import_items(item_result.merged, edge_result.merged)
            self.store.import_comments(comment_result.merged)
        finally:
            self.store.set_auto_sync(previous_auto_sync)

        export_to_jsonl(
            item_result.merged, comment_result.merged, edge_result.merged, self.data_file
        )

        if result.fetch_error is not None:
            logger.warning("Skipping push because the remote could not be fetched")
        elif push:
            try:
                push_result = self.transport.push(
                    self.data_file, target, message, expected_sha=merged_against
                )
            except GitError as e:
                logger.warning("Push to %s failed, local state is merged: %s", target, e)
                result.push_error = str(e)
            else:
                result.pushed = push_result.pushed
                result.commit_sha = push_result.commit_sha

        result.completed_at = utc_now()
        logger.info("Sync finished: %s", result.summary())
        return result
