"""
Tests for the sync orchestrator.

Tests cover:
- First sync against an empty remote
- Two replicas converging
- Idempotent re-runs (byte-identical snapshot, no new commit)
- Dry runs
- Push failure after a successful local merge
- Unreachable remote (local-only pass)
- Corrupted remote snapshot
- Auto-sync suspension during import
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import T1, T2, git, make_item, make_replica

from worklog.core.items import SnapshotCorruptedError, WorklogStore
from worklog.core.sync import (
    GitTarget,
    NotAGitRepositoryError,
    SyncResult,
    SyncService,
)
from worklog.core.sync.transport import DEFAULT_COMMIT_MESSAGE, SnapshotTransport

TARGET = GitTarget(remote="origin", branch="refs/worklog/data")
DATA_PATH = ".worklog/worklog-data.jsonl"


def open_replica(repo: Path) -> tuple[WorklogStore, SyncService]:
    store = WorklogStore(repo / ".worklog" / "worklog.db")
    return store, SyncService(store, Path(DATA_PATH), project_dir=repo)


def commit_count(bare: Path) -> int:
    return int(git(bare, "rev-list", "--count", "refs/worklog/data"))


class InterleavingTransport(SnapshotTransport):
    """Runs `before_push` after the merge but before the snapshot is pushed."""

    def __init__(self, project_dir: Path, before_push: Callable[[], object]) -> None:
        super().__init__(project_dir)
        self.before_push = before_push

    def push(self, data_file, target, message=DEFAULT_COMMIT_MESSAGE, expected_sha=None):
        self.before_push()
        return super().push(data_file, target, message, expected_sha=expected_sha)


class TestFirstSync:
    """Tests for syncing against an empty remote."""

    def test_pushes_local_state(self, repo_with_remote: Path, bare_remote: Path) -> None:
        store, service = open_replica(repo_with_remote)
        item = store.create_item("First item")

        result = service.sync(TARGET)

        assert isinstance(result, SyncResult)
        assert result.success
        assert result.remote_found is False
        assert result.pushed is True
        assert result.items_unchanged == 1
        assert result.total_items == 1
        assert commit_count(bare_remote) == 1
        pushed = git(bare_remote, "show", f"refs/worklog/data:{DATA_PATH}")
        assert item.id in pushed

    def test_empty_store_still_writes_snapshot(self, repo_with_remote: Path) -> None:
        _, service = open_replica(repo_with_remote)

        result = service.sync(TARGET, push=False)

        assert result.success
        assert (repo_with_remote / DATA_PATH).read_text() == ""

    def test_outside_repository_raises(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        store = WorklogStore(plain / ".worklog" / "worklog.db")

        with pytest.raises(NotAGitRepositoryError):
            SyncService(store, Path(DATA_PATH), project_dir=plain).sync(TARGET)


class TestConvergence:
    """Tests for two replicas exchanging state."""

    def test_replicas_converge(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        store_a, service_a = open_replica(repo_with_remote)
        replica_b = make_replica(tmp_path, "replica-b", bare_remote)
        store_b, service_b = open_replica(replica_b)

        a_item = store_a.create_item("From A", tags=["a"])
        service_a.sync(TARGET)
        b_item = store_b.create_item("From B")
        store_b.add_comment(b_item.id, "bob", "hello")

        result_b = service_b.sync(TARGET)
        result_a = service_a.sync(TARGET)

        assert result_b.remote_found is True
        assert result_b.items_added == 1
        assert result_a.items_added == 1
        assert result_a.comments_added == 1
        ids_a = [i.id for i in store_a.get_all_items()]
        ids_b = [i.id for i in store_b.get_all_items()]
        assert ids_a == ids_b == sorted([a_item.id, b_item.id])
        assert (repo_with_remote / DATA_PATH).read_bytes() == (
            replica_b / DATA_PATH
        ).read_bytes()

    def test_conflicting_edits_are_reported(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        store_a, service_a = open_replica(repo_with_remote)
        replica_b = make_replica(tmp_path, "replica-b", bare_remote)
        store_b, service_b = open_replica(replica_b)

        store_a.import_items([make_item("WI-1", priority="low", updated_at=T1)], [])
        service_a.sync(TARGET)
        store_b.import_items([make_item("WI-1", priority="high", updated_at=T2)], [])

        result = service_b.sync(TARGET)

        assert result.items_unchanged == 1
        assert result.conflict_details[0].item_id == "WI-1"
        assert result.conflict_details[0].fields[0].field == "priority"
        assert any("Conflicting fields [priority]" in c for c in result.conflicts)
        assert store_b.get_item("WI-1").priority.value == "high"

    def test_dependency_edges_travel(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        store_a, service_a = open_replica(repo_with_remote)
        first = store_a.create_item("First")
        second = store_a.create_item("Second")
        store_a.add_dependency(second.id, first.id)
        service_a.sync(TARGET)

        replica_b = make_replica(tmp_path, "replica-b", bare_remote)
        store_b, service_b = open_replica(replica_b)
        result = service_b.sync(TARGET)

        assert result.edges_added == 1
        assert [e.key for e in store_b.get_all_dependency_edges()] == [(second.id, first.id)]


class TestIdempotence:
    """Tests for re-running sync without changes."""

    def test_second_sync_is_a_noop(self, repo_with_remote: Path, bare_remote: Path) -> None:
        store, service = open_replica(repo_with_remote)
        store.create_item("Stable")
        service.sync(TARGET)
        snapshot_before = (repo_with_remote / DATA_PATH).read_bytes()

        result = service.sync(TARGET)

        assert result.success
        assert result.pushed is False
        assert result.commit_sha is None
        assert result.items_added == result.items_updated == 0
        assert result.conflicts == []
        assert commit_count(bare_remote) == 1
        assert (repo_with_remote / DATA_PATH).read_bytes() == snapshot_before


class TestDryRun:
    """Tests for dry runs."""

    def test_dry_run_changes_nothing(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        store_a, service_a = open_replica(repo_with_remote)
        store_a.create_item("Remote item")
        service_a.sync(TARGET)
        replica_b = make_replica(tmp_path, "replica-b", bare_remote)
        store_b, service_b = open_replica(replica_b)

        result = service_b.sync(TARGET, dry_run=True)

        assert result.dry_run is True
        assert result.items_added == 1
        assert store_b.get_all_items() == []
        assert not (replica_b / DATA_PATH).exists()
        assert commit_count(bare_remote) == 1


class TestFailures:
    """Tests for per-phase failures."""

    def test_push_failure_keeps_local_merge(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        store_a, service_a = open_replica(repo_with_remote)
        store_a.create_item("Shared")
        service_a.sync(TARGET)
        replica_b = make_replica(tmp_path, "replica-b", bare_remote)
        store_b, service_b = open_replica(replica_b)
        store_b.create_item("Local only")
        hook = bare_remote / "hooks" / "pre-receive"
        hook.write_text("#!/bin/sh\nexit 1\n")
        os.chmod(hook, 0o755)

        result = service_b.sync(TARGET)

        assert result.success is False
        assert result.push_error
        assert result.fetch_error is None
        assert len(store_b.get_all_items()) == 2
        assert "merged locally but push failed" in result.summary()

    def test_remote_update_after_merge_is_rejected(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        """A peer publishing between merge and push must not be overwritten."""
        store_a, service_a = open_replica(repo_with_remote)
        store_a.create_item("From A")
        service_a.sync(TARGET)
        replica_b = make_replica(tmp_path, "replica-b", bare_remote)
        store_b, service_b = open_replica(replica_b)
        b_item = store_b.create_item("From B")
        store_a.create_item("Second from A")
        racing = SyncService(
            store_a,
            Path(DATA_PATH),
            project_dir=repo_with_remote,
            transport=InterleavingTransport(repo_with_remote, lambda: service_b.sync(TARGET)),
        )

        result = racing.sync(TARGET)

        assert result.success is False
        assert "rejected" in result.push_error
        assert result.pushed is False
        assert b_item.id in git(bare_remote, "show", f"refs/worklog/data:{DATA_PATH}")

        retry = service_a.sync(TARGET)

        assert retry.success
        remote_snapshot = git(bare_remote, "show", f"refs/worklog/data:{DATA_PATH}")
        assert all(item.id in remote_snapshot for item in store_a.get_all_items())
        assert len(store_a.get_all_items()) == 3

    def test_unreachable_remote_runs_local_only(self, git_repo: Path, tmp_path: Path) -> None:
        git(git_repo, "remote", "add", "origin", str(tmp_path / "missing.git"))
        store, service = open_replica(git_repo)
        store.create_item("Offline")

        result = service.sync(TARGET)

        assert result.success is False
        assert result.fetch_error
        assert result.pushed is False
        assert result.remote_found is False
        assert (git_repo / DATA_PATH).exists()
        assert "local-only" in result.summary()

    def test_corrupted_remote_snapshot_raises(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        polluter = make_replica(tmp_path, "polluter", bare_remote)
        (polluter / ".worklog").mkdir()
        (polluter / DATA_PATH).write_text("{broken\n")
        git(polluter, "add", "-f", DATA_PATH)
        git(polluter, "commit", "-m", "broken snapshot")
        git(polluter, "push", "origin", "HEAD:refs/worklog/data")
        store, service = open_replica(repo_with_remote)
        store.create_item("Keep me")

        with pytest.raises(SnapshotCorruptedError):
            service.sync(TARGET)

        assert len(store.get_all_items()) == 1


class TestAutoSync:
    """Tests for auto-sync suspension during import."""

    def test_auto_sync_is_suspended_and_restored(self, repo_with_remote: Path) -> None:
        store, service = open_replica(repo_with_remote)
        store.create_item("Item")
        calls: list[int] = []
        store.set_auto_sync(True, lambda: calls.append(1))

        service.sync(TARGET, push=False)

        assert calls == []
        assert store.auto_sync_enabled is True
