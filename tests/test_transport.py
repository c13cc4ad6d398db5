"""
Tests for the snapshot transport.

Tests cover:
- Bootstrapping an orphan one-file history on an empty remote
- No commit when the snapshot is unchanged
- Removing foreign files from a polluted snapshot ref
- Worktree cleanup on success and failure
- Rejected and failed pushes
- Reusing a leftover local snapshot branch
- Leaving the user's branch, index and HEAD untouched
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest
from conftest import git, git_version, make_replica

from worklog.core.sync.fetch import RemoteFetcher
from worklog.core.sync.models import GitTarget
from worklog.core.sync.transport import (
    PushError,
    PushRejectedError,
    SnapshotTransport,
    WorktreeSetupError,
    local_branch_name,
)

TARGET = GitTarget(remote="origin", branch="refs/worklog/data")
DATA_PATH = ".worklog/worklog-data.jsonl"


def write_snapshot(repo: Path, content: str) -> Path:
    path = repo / DATA_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def remote_files(bare: Path, ref: str = "refs/worklog/data") -> list[str]:
    return git(bare, "ls-tree", "-r", "--name-only", ref).splitlines()


def remote_commit_count(bare: Path, ref: str = "refs/worklog/data") -> int:
    return int(git(bare, "rev-list", "--count", ref))


def temp_worktrees(repo: Path) -> list[Path]:
    return list((repo / ".worklog").glob("tmp-worktree-*"))


def install_rejecting_hook(bare: Path) -> Path:
    hook = bare / "hooks" / "pre-receive"
    hook.write_text("#!/bin/sh\necho 'snapshots are frozen' >&2\nexit 1\n")
    os.chmod(hook, 0o755)
    return hook


class TestLocalBranchName:
    """Tests for local_branch_name."""

    def test_strips_refs_prefixes(self) -> None:
        assert local_branch_name("refs/worklog/data") == "worklog/data"
        assert local_branch_name("refs/heads/worklog-data") == "worklog-data"
        assert local_branch_name("worklog-data") == "worklog-data"


class TestBootstrap:
    """Tests for the first push to an empty remote."""

    def test_creates_orphan_one_file_history(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        data_file = write_snapshot(repo_with_remote, '{"type": "workitem"}\n')

        result = SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        assert result.committed is True
        assert result.pushed is True
        assert remote_files(bare_remote) == [DATA_PATH]
        assert remote_commit_count(bare_remote) == 1
        assert git(bare_remote, "rev-parse", "refs/worklog/data") == result.commit_sha

    def test_branch_target_is_pushed_under_refs_heads(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")

        SnapshotTransport(repo_with_remote).push(
            data_file, GitTarget(remote="origin", branch="worklog-data")
        )

        assert remote_files(bare_remote, "refs/heads/worklog-data") == [DATA_PATH]

    def test_commit_message_is_used(self, repo_with_remote: Path, bare_remote: Path) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")

        SnapshotTransport(repo_with_remote).push(data_file, TARGET, message="Custom sync")

        assert git(bare_remote, "log", "-1", "--format=%s", "refs/worklog/data") == "Custom sync"

    @pytest.mark.skipif(git_version() < (2, 42), reason="worktree add --orphan needs git 2.42")
    def test_unborn_repository(self, tmp_path: Path, bare_remote: Path) -> None:
        repo = tmp_path / "unborn"
        repo.mkdir()
        git(repo, "init")
        git(repo, "config", "user.email", "test@example.com")
        git(repo, "config", "user.name", "Test User")
        git(repo, "remote", "add", "origin", str(bare_remote))
        data_file = write_snapshot(repo, "{}\n")

        result = SnapshotTransport(repo).push(data_file, TARGET)

        assert result.pushed is True
        assert remote_files(bare_remote) == [DATA_PATH]


class TestIncrementalPush:
    """Tests for pushes on top of an existing snapshot ref."""

    def test_unchanged_snapshot_creates_no_commit(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        transport.push(data_file, TARGET)

        result = transport.push(data_file, TARGET)

        assert result.committed is False
        assert result.pushed is False
        assert result.commit_sha is None
        assert remote_commit_count(bare_remote) == 1

    def test_changed_snapshot_appends_commit(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        first = transport.push(data_file, TARGET)

        write_snapshot(repo_with_remote, '{"changed": true}\n')
        second = transport.push(data_file, TARGET)

        assert second.committed is True
        assert remote_commit_count(bare_remote) == 2
        assert git(bare_remote, "rev-parse", "refs/worklog/data^") == first.commit_sha
        assert git(bare_remote, "show", f"refs/worklog/data:{DATA_PATH}") == '{"changed": true}'

    def test_foreign_files_are_removed(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        """Files pushed to the snapshot ref by someone else are dropped."""
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        transport.push(data_file, TARGET)

        polluter = make_replica(tmp_path, "polluter", bare_remote)
        git(polluter, "fetch", "origin", "refs/worklog/data:refs/heads/data")
        git(polluter, "checkout", "data")
        (polluter / "junk.txt").write_text("junk\n")
        git(polluter, "add", "junk.txt")
        git(polluter, "commit", "-m", "pollute")
        git(polluter, "push", "origin", "data:refs/worklog/data")
        assert "junk.txt" in remote_files(bare_remote)

        result = transport.push(data_file, TARGET)

        assert result.committed is True
        assert remote_files(bare_remote) == [DATA_PATH]


class TestIsolation:
    """Tests that the user's checkout is never touched."""

    def test_head_branch_and_index_are_untouched(self, repo_with_remote: Path) -> None:
        (repo_with_remote / "staged.txt").write_text("work in progress\n")
        git(repo_with_remote, "add", "staged.txt")
        head_before = git(repo_with_remote, "rev-parse", "HEAD")
        branch_before = git(repo_with_remote, "symbolic-ref", "HEAD")
        data_file = write_snapshot(repo_with_remote, "{}\n")

        SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        assert git(repo_with_remote, "rev-parse", "HEAD") == head_before
        assert git(repo_with_remote, "symbolic-ref", "HEAD") == branch_before
        assert git(repo_with_remote, "diff", "--cached", "--name-only") == "staged.txt"

    def test_worktree_is_removed_after_push(self, repo_with_remote: Path) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")

        SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        assert temp_worktrees(repo_with_remote) == []
        worktrees = git(repo_with_remote, "worktree", "list", "--porcelain")
        assert worktrees.count("worktree ") == 1

    def test_worktree_is_removed_after_failure(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        install_rejecting_hook(bare_remote)
        data_file = write_snapshot(repo_with_remote, "{}\n")

        with pytest.raises(PushError):
            SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        assert temp_worktrees(repo_with_remote) == []
        worktrees = git(repo_with_remote, "worktree", "list", "--porcelain")
        assert worktrees.count("worktree ") == 1

    def test_missing_snapshot_file_is_noop(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        result = SnapshotTransport(repo_with_remote).push(
            repo_with_remote / DATA_PATH, TARGET
        )

        assert result.pushed is False
        check = subprocess.run(
            ["git", "show-ref", "--verify", "--quiet", "refs/worklog/data"],
            cwd=bare_remote,
        )
        assert check.returncode != 0


class TestPushFailures:
    """Tests for rejected and failed pushes."""

    def test_hook_rejection_is_push_error(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        install_rejecting_hook(bare_remote)
        data_file = write_snapshot(repo_with_remote, "{}\n")

        with pytest.raises(PushError) as exc_info:
            SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        assert not isinstance(exc_info.value, PushRejectedError)

    def test_concurrent_update_is_rejected(
        self, tmp_path: Path, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        """Another replica moving the ref between fetch and push is a rejection."""
        data_file = write_snapshot(repo_with_remote, "{}\n")
        SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        other = make_replica(tmp_path, "other", bare_remote)
        other_file = write_snapshot(other, '{"other": true}\n')

        class RacingFetcher(RemoteFetcher):
            def fetch_target(self, target):
                outcome = super().fetch_target(target)
                SnapshotTransport(other).push(other_file, target)
                return outcome

        write_snapshot(repo_with_remote, '{"mine": true}\n')
        transport = SnapshotTransport(
            repo_with_remote, fetcher=RacingFetcher(repo_with_remote)
        )

        with pytest.raises(PushRejectedError):
            transport.push(data_file, TARGET)

        assert git(bare_remote, "show", f"refs/worklog/data:{DATA_PATH}") == '{"other": true}'


class TestExpectedTip:
    """Tests for leasing the push against the tip the snapshot was merged with."""

    def test_matching_tip_pushes(self, repo_with_remote: Path, bare_remote: Path) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        first = transport.push(data_file, TARGET, expected_sha="")

        write_snapshot(repo_with_remote, '{"next": true}\n')
        second = transport.push(data_file, TARGET, expected_sha=first.commit_sha)

        assert second.pushed is True
        assert remote_commit_count(bare_remote) == 2

    def test_moved_tip_is_rejected(self, repo_with_remote: Path, bare_remote: Path) -> None:
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        first = transport.push(data_file, TARGET)

        write_snapshot(repo_with_remote, '{"stale": true}\n')
        with pytest.raises(PushRejectedError):
            transport.push(data_file, TARGET, expected_sha="0" * 40)

        assert git(bare_remote, "rev-parse", "refs/worklog/data") == first.commit_sha
        assert temp_worktrees(repo_with_remote) == []

    def test_expected_absent_but_ref_exists_is_rejected(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        """A snapshot merged against an empty remote must not replace a fresh ref."""
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        first = transport.push(data_file, TARGET)

        write_snapshot(repo_with_remote, '{"mine": true}\n')
        with pytest.raises(PushRejectedError):
            transport.push(data_file, TARGET, expected_sha="")

        assert git(bare_remote, "rev-parse", "refs/worklog/data") == first.commit_sha


class TestLeftoverBranch:
    """Tests for reusing a local snapshot branch that was never pushed."""

    def test_unpushed_branch_is_pushed_later(
        self, repo_with_remote: Path, bare_remote: Path
    ) -> None:
        hook = install_rejecting_hook(bare_remote)
        data_file = write_snapshot(repo_with_remote, "{}\n")
        transport = SnapshotTransport(repo_with_remote)
        with pytest.raises(PushError):
            transport.push(data_file, TARGET)
        assert git(repo_with_remote, "show", f"refs/heads/worklog/data:{DATA_PATH}") == "{}"
        hook.unlink()

        result = transport.push(data_file, TARGET)

        assert result.pushed is True
        assert result.committed is False
        assert remote_files(bare_remote) == [DATA_PATH]
        assert remote_commit_count(bare_remote) == 1

    def test_foreign_local_branch_is_not_reused(self, repo_with_remote: Path) -> None:
        """A user branch that shares the snapshot branch name is left alone."""
        git(repo_with_remote, "branch", "worklog/data")
        data_file = write_snapshot(repo_with_remote, "{}\n")

        with pytest.raises(WorktreeSetupError):
            SnapshotTransport(repo_with_remote).push(data_file, TARGET)

        assert temp_worktrees(repo_with_remote) == []
