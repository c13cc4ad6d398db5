"""
Snapshot replication through a dedicated ref.

The snapshot is never committed on the user's checked-out branch.
Instead each push:

1. adds a throwaway worktree under `.worklog/tmp-worktree-*/wt`, detached
   at the freshly fetched tip of the target ref (or, when the ref doesn't
   exist yet, switched to a new orphan branch with no files);
2. drops every tracked file except the snapshot;
3. copies the snapshot in, force-adds it and commits only if the index
   differs from the previous tip;
4. pushes `HEAD:<target ref>` directly, independent of any upstream;
5. removes the worktree and its temp directory on every exit path.

Worktree creation against one repository is serialized with a repo lock.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, Repo

from worklog.core.sync._lock import repo_lock
from worklog.core.sync.fetch import FetchOutcome, RemoteFetcher, remote_ref_name
from worklog.core.sync.git import (
    GitError,
    NotAGitRepositoryError,
    get_git_common_dir,
    get_repo_root,
    repo_relative_path,
    resolve_ref,
)
from worklog.core.sync.models import GitTarget, PushResult

logger = logging.getLogger(__name__)

WORKLOG_DIR = ".worklog"
TEMP_WORKTREE_PREFIX = "tmp-worktree-"
DEFAULT_COMMIT_MESSAGE = "Sync work items and comments"

_REJECTED_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "stale info")


class TransportError(GitError):
    """Base exception for snapshot transport failures."""


class WorktreeSetupError(TransportError):
    """Raised when the disposable worktree cannot be prepared."""


class PushError(TransportError):
    """Raised when pushing the snapshot commit fails."""


class PushRejectedError(PushError):
    """Raised when the remote rejects the push (e.g. the ref moved concurrently)."""


@dataclass
class SnapshotWorktree:
    """
    A disposable checkout of the target ref.

    Attributes:
        path: Worktree directory
        repo: GitPython handle rooted at the worktree
        has_remote: Whether the target ref existed on the remote
        base_ref: Ref the worktree was created from
        remote_sha: Commit the remote ref pointed at when fetched
    """

    path: Path
    repo: Repo
    has_remote: bool
    base_ref: str
    remote_sha: str | None = None


def local_branch_name(branch_or_ref: str) -> str:
    """Branch name used for the orphan checkout ("refs/worklog/data" -> "worklog/data")."""
    if branch_or_ref.startswith("refs/heads/"):
        return branch_or_ref[len("refs/heads/"):]
    if branch_or_ref.startswith("refs/"):
        return branch_or_ref[len("refs/"):]
    return branch_or_ref


class SnapshotTransport:
    """
    Pushes the local snapshot file to its dedicated ref on a remote.

    Example:
        >>> transport = SnapshotTransport(Path("."))
        >>> result = transport.push(
        ...     Path(".worklog/worklog-data.jsonl"),
        ...     GitTarget(remote="origin", branch="refs/worklog/data"),
        ... )
        >>> result.pushed
        True
    """

    def __init__(
        self,
        project_dir: Path | None = None,
        fetcher: RemoteFetcher | None = None,
    ) -> None:
        self.project_dir = (project_dir or Path.cwd()).resolve()
        self.fetcher = fetcher or RemoteFetcher(self.project_dir)

    def _open_repo(self, repo_root: Path) -> Repo:
        try:
            return Repo(repo_root)
        except InvalidGitRepositoryError as e:
            raise NotAGitRepositoryError(f"Not a git repository: {repo_root}") from e

    @contextmanager
    def disposable_worktree(
        self, target: GitTarget, snapshot_path: str
    ) -> Iterator[SnapshotWorktree]:
        """
        Create a throwaway worktree for the target ref and always remove it.

        Args:
            target: Remote and branch or ref.
            snapshot_path: Repo-relative snapshot path; a leftover local branch
                is only reused if it holds nothing else.

        Raises:
            NotAGitRepositoryError: If project_dir is not a git repository.
            RemoteFetchError: If the remote ref exists but can't be fetched.
            WorktreeSetupError: If the worktree can't be created or prepared.
        """
        repo_root = get_repo_root(self.project_dir)
        with self._open_repo(repo_root) as repo, repo_lock(get_git_common_dir(repo_root)):
            outcome = self.fetcher.fetch_target(target)

            temp_base = repo_root / WORKLOG_DIR
            temp_base.mkdir(parents=True, exist_ok=True)
            temp_root = Path(tempfile.mkdtemp(prefix=TEMP_WORKTREE_PREFIX, dir=temp_base))
            worktree_path = temp_root / "wt"

            worktree: SnapshotWorktree | None = None
            try:
                worktree = self._create_worktree(
                    repo, worktree_path, target, outcome, snapshot_path
                )
                yield worktree
            finally:
                if worktree is not None:
                    worktree.repo.close()
                self._remove_worktree(repo, worktree_path)
                shutil.rmtree(temp_root, ignore_errors=True)

    def _create_worktree(
        self,
        repo: Repo,
        worktree_path: Path,
        target: GitTarget,
        outcome: FetchOutcome,
        snapshot_path: str,
    ) -> SnapshotWorktree:
        branch = local_branch_name(target.branch)
        local_ref = f"refs/heads/{branch}"
        repo_root = Path(repo.working_dir)

        try:
            if outcome.has_remote:
                repo.git.worktree("add", "--detach", str(worktree_path), outcome.tracking_ref)
                base_ref = outcome.tracking_ref
            elif resolve_ref(local_ref, repo_root):
                # An earlier run committed locally but never got to push.
                self._check_leftover_branch(repo, local_ref, snapshot_path)
                repo.git.worktree("add", "--detach", str(worktree_path), local_ref)
                base_ref = local_ref
            elif resolve_ref("HEAD", repo_root):
                repo.git.worktree("add", "--detach", "--no-checkout", str(worktree_path), "HEAD")
                with Repo(worktree_path) as worktree_repo:
                    self._make_orphan(worktree_repo, branch)
                base_ref = "HEAD"
            else:
                # Unborn repository: nothing to detach at.
                repo.git.worktree("add", "--orphan", "-b", branch, str(worktree_path))
                base_ref = local_ref
        except GitCommandError as e:
            raise WorktreeSetupError(
                f"Failed to set up worktree for {target}",
                stderr=str(e.stderr).strip(),
            ) from e

        logger.debug("Created snapshot worktree at %s from %s", worktree_path, base_ref)
        return SnapshotWorktree(
            path=worktree_path,
            repo=Repo(worktree_path),
            has_remote=outcome.has_remote,
            base_ref=base_ref,
            remote_sha=outcome.tip_sha,
        )

    def _check_leftover_branch(self, repo: Repo, local_ref: str, snapshot_path: str) -> None:
        """Only reuse a local branch that holds nothing but the snapshot."""
        files = {f for f in repo.git.ls_tree("-r", "--name-only", local_ref).splitlines() if f}
        if not files <= {snapshot_path}:
            raise WorktreeSetupError(
                f"Local branch {local_ref} exists and is not a snapshot branch "
                f"({len(files)} files); rename it or choose another sync ref"
            )

    def _make_orphan(self, worktree_repo: Repo, branch: str) -> None:
        """Switch a fresh worktree to an empty orphan branch."""
        git = worktree_repo.git
        git.checkout("--orphan", branch)
        # `checkout --orphan` keeps the previous index; start from nothing.
        git.rm("-r", "--cached", "--quiet", "--ignore-unmatch", "--", ".")
        git.clean("-fdx")
        for entry in Path(worktree_repo.working_dir).iterdir():
            if entry.name == ".git":
                continue
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def _remove_worktree(self, repo: Repo, worktree_path: Path) -> None:
        try:
            repo.git.worktree("remove", "--force", str(worktree_path))
        except GitCommandError as e:
            logger.warning("Failed to remove worktree %s: %s", worktree_path, e.stderr)
        try:
            repo.git.worktree("prune")
        except GitCommandError as e:
            logger.warning("Failed to prune worktrees: %s", e.stderr)

    def _remove_other_files(self, worktree: SnapshotWorktree, relative_path: str) -> None:
        """Drop tracked files other than the snapshot in case the ref was polluted."""
        git = worktree.repo.git
        tracked = [p for p in git.ls_files("-z").split("\0") if p.strip()]
        others = [p for p in tracked if p != relative_path]
        if not others:
            return
        logger.warning(
            "Removing %d unexpected file(s) from snapshot ref %s", len(others), worktree.base_ref
        )
        git.rm("-r", "--quiet", "--", *others)
        git.clean("-fdx")

    def push(
        self,
        data_file: Path,
        target: GitTarget,
        message: str = DEFAULT_COMMIT_MESSAGE,
        expected_sha: str | None = None,
    ) -> PushResult:
        """
        Commit the snapshot on the target ref and push it.

        The push is leased against the remote tip the snapshot was merged
        with, so a ref that moved in the meantime is rejected instead of
        being overwritten.

        Args:
            data_file: Local snapshot file, absolute or relative to project_dir.
            target: Remote and branch or ref to push to.
            message: Commit message.
            expected_sha: Remote tip the snapshot was merged against. An empty
                string means the ref must not exist yet. None leases against
                the tip fetched here.

        Returns:
            PushResult. No commit is created when the snapshot is unchanged.

        Raises:
            NotAGitRepositoryError: If project_dir is not a git repository.
            RemoteFetchError: If the remote ref exists but can't be fetched.
            WorktreeSetupError: If the disposable worktree can't be prepared.
            PushRejectedError: If the remote rejects the update.
            PushError: If the push fails for another reason.
        """
        repo_root = get_repo_root(self.project_dir)
        source = data_file if data_file.is_absolute() else self.project_dir / data_file
        relative_path = repo_relative_path(repo_root, source, self.project_dir)

        if not source.exists():
            logger.info("No snapshot file at %s, nothing to push", source)
            return PushResult(message="No snapshot file to push")

        with self.disposable_worktree(target, relative_path) as worktree:
            lease_sha = worktree.remote_sha or ""
            if expected_sha is not None and expected_sha != lease_sha:
                raise PushRejectedError(
                    f"Push to {target} was rejected",
                    stderr=(
                        f"remote ref moved from {expected_sha or '(absent)'} "
                        f"to {lease_sha or '(absent)'} since the snapshot was merged"
                    ),
                )

            git = worktree.repo.git
            try:
                self._remove_other_files(worktree, relative_path)

                destination = worktree.path / relative_path
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, destination)

                # The snapshot is usually ignored in the main tree; force-add it here.
                git.add("-f", "--", relative_path)
                staged = git.diff("--cached", "--name-only").strip()
                committed = False
                if staged:
                    git.commit("--no-verify", "-m", message)
                    committed = True
                elif worktree.has_remote:
                    logger.info("Snapshot unchanged on %s, nothing to push", target)
                    return PushResult(message="No changes to push")
                head_sha = git.rev_parse("HEAD")
            except GitCommandError as e:
                raise TransportError(
                    f"Failed to commit snapshot for {target}",
                    stderr=str(e.stderr).strip(),
                ) from e

            push_ref = remote_ref_name(target.branch)
            try:
                git.push(
                    f"--force-with-lease={push_ref}:{lease_sha}",
                    target.remote,
                    f"HEAD:{push_ref}",
                )
            except GitCommandError as e:
                stderr = str(e.stderr).strip()
                if any(marker in stderr for marker in _REJECTED_MARKERS):
                    raise PushRejectedError(
                        f"Push to {target} was rejected", stderr=stderr
                    ) from e
                raise PushError(f"Failed to push to {target}", stderr=stderr) from e

        logger.info("Pushed snapshot %s to %s", head_sha[:8], target)
        return PushResult(
            committed=committed,
            pushed=True,
            commit_sha=head_sha,
            message=f"Pushed {head_sha[:8]} to {push_ref}",
        )
