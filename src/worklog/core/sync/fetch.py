"""
Remote snapshot fetching.

Resolves a (remote, branch-or-ref) target to the remote's current
snapshot blob. Plain branches are tracked in the usual
`refs/remotes/<remote>/<branch>` namespace. Explicit refs such as
`refs/worklog/data` are tracked under a private namespace,
`refs/worklog/remotes/<remote>/...`, so they can never collide with a
real remote-tracking branch or be rejected as a non-fast-forward update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from worklog.core.sync.git import (
    GitError,
    get_repo_root,
    git_returncode,
    repo_relative_path,
    resolve_ref,
    run_git,
    stream_git,
)
from worklog.core.sync.models import GitTarget

logger = logging.getLogger(__name__)

PRIVATE_TRACKING_PREFIX = "refs/worklog/remotes"

# `git ls-remote --exit-code` exits 2 when no matching ref exists.
LS_REMOTE_NO_MATCH = 2


class RemoteFetchError(GitError):
    """A remote ref exists (or may exist) but could not be fetched."""


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of fetching a target.

    Attributes:
        has_remote: Whether the remote has the ref
        tracking_ref: Local ref the remote tip was stored under
        tip_sha: Commit the remote ref pointed at when fetched
    """

    has_remote: bool
    tracking_ref: str
    tip_sha: str | None = None


@dataclass(frozen=True)
class RemoteContent:
    """Snapshot bytes read at a fetched tip (None when absent)."""

    outcome: FetchOutcome
    content: bytes | None


def remote_tracking_ref(remote: str, branch_or_ref: str) -> str:
    """
    Local ref used to mirror a remote branch or ref.

    Examples:
        >>> remote_tracking_ref("origin", "worklog-data")
        'refs/remotes/origin/worklog-data'
        >>> remote_tracking_ref("origin", "refs/worklog/data")
        'refs/worklog/remotes/origin/worklog/data'
    """
    if branch_or_ref.startswith("refs/"):
        suffix = branch_or_ref[len("refs/"):]
        return f"{PRIVATE_TRACKING_PREFIX}/{remote}/{suffix}"
    return f"refs/remotes/{remote}/{branch_or_ref}"


def remote_ref_name(branch_or_ref: str) -> str:
    """Fully qualified name of the target on the remote side."""
    if branch_or_ref.startswith("refs/"):
        return branch_or_ref
    return f"refs/heads/{branch_or_ref}"


class RemoteFetcher:
    """
    Fetches the snapshot file from a remote ref without touching the
    working tree or index.

    Example:
        >>> fetcher = RemoteFetcher(Path("."))
        >>> content = fetcher.get_remote_content(
        ...     Path(".worklog/worklog-data.jsonl"),
        ...     GitTarget(remote="origin", branch="refs/worklog/data"),
        ... )
    """

    def __init__(self, project_dir: Path | None = None) -> None:
        self.project_dir = (project_dir or Path.cwd()).resolve()

    def _remote_ref_exists(self, target: GitTarget) -> bool:
        """
        Ask the remote for the ref with `git ls-remote`.

        Returns:
            True if the remote advertises the ref, False if it definitely doesn't.

        Raises:
            RemoteFetchError: If the remote cannot be listed at all.
        """
        ref = remote_ref_name(target.branch)
        args = ["ls-remote", "--exit-code", target.remote, ref]
        code = git_returncode(args, self.project_dir)
        if code == 0:
            return True
        if code == LS_REMOTE_NO_MATCH:
            return False
        raise RemoteFetchError(
            f"Unable to list {ref} on remote {target.remote} (exit code {code})",
            command=["git"] + args,
            returncode=code,
        )

    def fetch_target(self, target: GitTarget) -> FetchOutcome:
        """
        Force-fetch the target ref into its tracking ref.

        A failed fetch only means "no remote data" after the remote listing
        confirms the ref is absent. Otherwise the failure is raised so
        later pushes can't overwrite real history from an empty state.

        Raises:
            RemoteFetchError: If the ref exists remotely but can't be fetched,
                or the remote can't be reached.
        """
        tracking_ref = remote_tracking_ref(target.remote, target.branch)
        refspec = f"+{remote_ref_name(target.branch)}:{tracking_ref}"

        try:
            run_git(["fetch", "--no-tags", target.remote, refspec], self.project_dir)
        except GitError as e:
            logger.debug("Fetch of %s from %s failed: %s", refspec, target.remote, e.stderr)
            if self._remote_ref_exists(target):
                raise RemoteFetchError(
                    f"Failed to fetch existing remote ref {target.branch} from {target.remote}",
                    command=e.command,
                    stderr=e.stderr,
                    returncode=e.returncode,
                ) from e
            logger.info("Remote %s has no %s yet", target.remote, target.branch)
            return FetchOutcome(has_remote=False, tracking_ref=tracking_ref)

        tip_sha = resolve_ref(tracking_ref, self.project_dir)
        if tip_sha is not None:
            return FetchOutcome(has_remote=True, tracking_ref=tracking_ref, tip_sha=tip_sha)

        if self._remote_ref_exists(target):
            raise RemoteFetchError(
                f"Failed to create local tracking ref for {target.branch} from {target.remote}"
            )
        return FetchOutcome(has_remote=False, tracking_ref=tracking_ref)

    def read_remote(self, data_file: Path, target: GitTarget) -> RemoteContent:
        """
        Fetch the target and read the snapshot file at the fetched tip.

        The tip is read from the fetched commit itself, so the returned
        outcome names exactly the commit the content came from.

        Args:
            data_file: Local snapshot path, absolute or relative to project_dir;
                its repo-relative path is read remotely.
            target: Remote and branch or ref.

        Raises:
            NotAGitRepositoryError: If project_dir is not a git repository.
            RemoteFetchError: If the ref exists remotely but can't be fetched.
        """
        repo_root = get_repo_root(self.project_dir)
        relative_path = repo_relative_path(repo_root, data_file, self.project_dir)

        outcome = self.fetch_target(target)
        if not outcome.has_remote:
            return RemoteContent(outcome=outcome, content=None)

        ref_and_path = f"{outcome.tip_sha}:{relative_path}"
        if git_returncode(["cat-file", "-e", ref_and_path], repo_root) != 0:
            logger.info("%s has no %s", outcome.tracking_ref, relative_path)
            return RemoteContent(outcome=outcome, content=None)

        content = stream_git(["show", ref_and_path], repo_root)
        logger.info("Read %d bytes of remote snapshot from %s", len(content), outcome.tracking_ref)
        return RemoteContent(outcome=outcome, content=content)

    def get_remote_content(self, data_file: Path, target: GitTarget) -> bytes | None:
        """
        Raw snapshot bytes at the remote tip, or None if the ref or the
        file doesn't exist remotely.
        """
        return self.read_remote(data_file, target).content
