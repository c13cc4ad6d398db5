"""
Repository lock for snapshot pushes.

Only one sync pass per repository may own a temporary worktree at a time.
The lock pairs a per-process threading lock with an advisory file lock in
the common git directory, so linked worktrees of one repository contend
for the same lock.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "worklog-sync.lock"

_process_locks: dict[Path, threading.Lock] = {}
_process_locks_guard = threading.Lock()


def _process_lock(git_dir: Path) -> threading.Lock:
    key = git_dir.resolve()
    with _process_locks_guard:
        return _process_locks.setdefault(key, threading.Lock())


if sys.platform == "win32":
    import msvcrt

    def _lock_file(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _unlock_file(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _lock_file(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _unlock_file(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


@contextmanager
def repo_lock(git_dir: Path) -> Iterator[None]:
    """
    Hold the sync lock for the repository that owns `git_dir`.

    Args:
        git_dir: Common git directory, shared by all linked worktrees.
    """
    git_dir = Path(git_dir)
    lock_path = git_dir / LOCK_FILE_NAME
    with _process_lock(git_dir):
        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR)
        try:
            logger.debug("Acquiring sync lock %s", lock_path)
            _lock_file(fd)
            try:
                yield
            finally:
                _unlock_file(fd)
        finally:
            os.close(fd)
