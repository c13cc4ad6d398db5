"""
Blocking git subprocess helpers shared by the fetcher and the transport.

All version-control work is a plain `git` subprocess call. Blob reads go
through `stream_git`, which drains stdout in fixed-size chunks so large
snapshots are never limited by a capture buffer.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 120
STREAM_CHUNK_SIZE = 64 * 1024


class GitError(Exception):
    """Exception raised when a git operation fails."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
        returncode: int | None = None,
    ):
        super().__init__(message)
        self.command = command
        self.stderr = stderr
        self.returncode = returncode

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}: {self.stderr}" if self.stderr else base


class NotAGitRepositoryError(GitError):
    """Raised when the working directory is not inside a git repository."""


def run_git(
    args: list[str],
    cwd: Path,
    *,
    check: bool = True,
    input_data: str | None = None,
    timeout: float = GIT_TIMEOUT_SECONDS,
) -> str:
    """
    Run a git command and return its stdout.

    Args:
        args: Git command arguments (without "git" prefix).
        cwd: Directory to run the command in.
        check: Whether to raise on non-zero exit code.
        input_data: Optional stdin data to pass to the command.
        timeout: Seconds before the command is killed.

    Returns:
        Command stdout as string (stripped).

    Raises:
        GitError: If the command fails and check=True.
    """
    cmd = ["git"] + args
    logger.debug("Running git command: %s", " ".join(cmd))

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_data,
        )
    except subprocess.TimeoutExpired as e:
        raise GitError(f"Git command timed out: {' '.join(cmd)}", command=cmd) from e
    except FileNotFoundError as e:
        raise GitError("git not found in PATH", command=cmd) from e

    if check and result.returncode != 0:
        stderr = result.stderr.strip() if result.stderr else ""
        raise GitError(
            f"Git command failed: {' '.join(cmd)}",
            command=cmd,
            stderr=stderr,
            returncode=result.returncode,
        )

    return result.stdout.strip() if result.stdout else ""


def git_returncode(args: list[str], cwd: Path) -> int:
    """Run a git command only for its exit status."""
    cmd = ["git"] + args
    logger.debug("Running git command: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd, cwd=cwd, capture_output=True, timeout=GIT_TIMEOUT_SECONDS
        )
    except subprocess.TimeoutExpired as e:
        raise GitError(f"Git command timed out: {' '.join(cmd)}", command=cmd) from e
    except FileNotFoundError as e:
        raise GitError("git not found in PATH", command=cmd) from e
    return result.returncode


def stream_git(
    args: list[str],
    cwd: Path,
    chunk_size: int = STREAM_CHUNK_SIZE,
    timeout: float = GIT_TIMEOUT_SECONDS,
) -> bytes:
    """
    Run a git command and stream its stdout.

    Output is read in chunks as it is produced, with no upper bound on
    the total size. stderr goes to a temp file so a chatty stderr can
    never block the stdout pipe. A watchdog kills the process once
    `timeout` seconds have passed, even while output is still being read.

    Raises:
        GitError: If the command exits non-zero or times out.
    """
    cmd = ["git"] + args
    logger.debug("Streaming git command: %s", " ".join(cmd))

    chunks: list[bytes] = []
    with open(os.devnull, "rb") as stdin, tempfile.TemporaryFile() as stderr_file:
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
            )
        except FileNotFoundError as e:
            raise GitError("git not found in PATH", command=cmd) from e

        timed_out = threading.Event()

        def kill_on_timeout() -> None:
            timed_out.set()
            proc.kill()

        watchdog = threading.Timer(timeout, kill_on_timeout)
        watchdog.daemon = True
        watchdog.start()
        try:
            assert proc.stdout is not None  # for mypy
            for chunk in iter(lambda: proc.stdout.read(chunk_size), b""):
                chunks.append(chunk)
            proc.wait()
        finally:
            watchdog.cancel()
            proc.stdout.close()

        if timed_out.is_set():
            raise GitError(f"Git command timed out: {' '.join(cmd)}", command=cmd)

        if proc.returncode != 0:
            stderr_file.seek(0)
            stderr = stderr_file.read().decode("utf-8", errors="replace").strip()
            raise GitError(
                f"Git command failed: {' '.join(cmd)}",
                command=cmd,
                stderr=stderr,
                returncode=proc.returncode,
            )

    data = b"".join(chunks)
    logger.debug("Streamed %d bytes from git", len(data))
    return data


def ensure_git_repo(cwd: Path) -> None:
    """
    Raises:
        NotAGitRepositoryError: If cwd is not inside a git repository.
    """
    try:
        run_git(["rev-parse", "--git-dir"], cwd)
    except GitError as e:
        raise NotAGitRepositoryError(f"Not a git repository: {cwd}", stderr=e.stderr) from e


def get_repo_root(cwd: Path) -> Path:
    """Absolute path of the repository's top-level working directory."""
    ensure_git_repo(cwd)
    return Path(run_git(["rev-parse", "--show-toplevel"], cwd)).resolve()


def get_git_common_dir(cwd: Path) -> Path:
    """The git directory shared by every worktree of the repository."""
    common = Path(run_git(["rev-parse", "--git-common-dir"], cwd))
    if not common.is_absolute():
        common = cwd / common
    return common.resolve()


def repo_relative_path(repo_root: Path, file_path: Path, base_dir: Path) -> str:
    """
    Repository-relative POSIX path of `file_path`, as git pathspecs expect.

    Args:
        repo_root: Top-level working directory of the repository.
        file_path: Absolute path, or a path relative to `base_dir`.
        base_dir: Directory that relative paths are resolved against.

    Raises:
        GitError: If the path lies outside the repository.
    """
    absolute = file_path if file_path.is_absolute() else base_dir / file_path
    try:
        return absolute.resolve().relative_to(repo_root.resolve()).as_posix()
    except ValueError as e:
        raise GitError(f"{absolute} is outside the repository at {repo_root}") from e


def ref_exists(ref: str, cwd: Path) -> bool:
    """Check if a fully qualified ref exists locally."""
    return git_returncode(["show-ref", "--verify", "--quiet", ref], cwd) == 0


def resolve_ref(ref: str, cwd: Path) -> str | None:
    """SHA a ref points to, or None if it doesn't resolve to a commit."""
    result = run_git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd, check=False)
    return result or None
