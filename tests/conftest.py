"""
Pytest configuration and shared fixtures.

Provides real temporary git repositories, bare remotes, cloned replicas,
and work item factories used across the test suite.
"""

from __future__ import annotations

import os
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path

import pytest

from worklog.core.items import WorklogStore
from worklog.core.items.models import WorkItem

# ==============================================================================
# Git helpers
# ==============================================================================


def git(cwd: Path, *args: str) -> str:
    """Run a git command in cwd and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def configure_user(repo: Path) -> None:
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "commit.gpgsign", "false")


def git_version() -> tuple[int, int]:
    out = subprocess.run(["git", "--version"], capture_output=True, text=True).stdout
    match = re.search(r"(\d+)\.(\d+)", out)
    return (int(match.group(1)), int(match.group(2))) if match else (0, 0)


def make_replica(tmp_path: Path, name: str, remote: Path) -> Path:
    """Clone the bare remote into a new replica with a configured user."""
    replica = tmp_path / name
    subprocess.run(
        ["git", "clone", str(remote), str(replica)],
        capture_output=True,
        check=True,
    )
    configure_user(replica)
    return replica


# ==============================================================================
# Environment fixtures
# ==============================================================================

WORKLOG_ENV_VARS = (
    "WORKLOG_SYNC_REMOTE",
    "WORKLOG_SYNC_BRANCH",
    "WORKLOG_AUTO_SYNC",
    "WORKLOG_PREFIX",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Hide host WORKLOG_* variables and user .env files; undo .env loading afterwards."""
    for name in WORKLOG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


# ==============================================================================
# Repository fixtures
# ==============================================================================


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with an initial commit."""
    repo = tmp_path / "repo"
    repo.mkdir()

    git(repo, "init")
    configure_user(repo)

    (repo / "README.md").write_text("# Test Repo\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-m", "Initial commit")

    return repo


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """Create an empty bare repository to act as the shared remote."""
    remote = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", str(remote)], capture_output=True, check=True)
    return remote


@pytest.fixture
def repo_with_remote(git_repo: Path, bare_remote: Path) -> Path:
    """Git repository with `origin` pointing at the bare remote."""
    git(git_repo, "remote", "add", "origin", str(bare_remote))
    git(git_repo, "push", "origin", "HEAD")
    return git_repo


# ==============================================================================
# Work item fixtures
# ==============================================================================

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 2, 12, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 3, 12, 0, 0, tzinfo=timezone.utc)


def make_item(item_id: str = "WI-1", **fields) -> WorkItem:
    """Build a work item with fixed timestamps unless overridden."""
    fields.setdefault("title", f"Item {item_id}")
    fields.setdefault("created_at", T0)
    fields.setdefault("updated_at", T0)
    return WorkItem(id=item_id, **fields)


@pytest.fixture
def store(tmp_path: Path) -> WorklogStore:
    """A fresh store outside any repository."""
    return WorklogStore(tmp_path / "store" / "worklog.db")


@pytest.fixture
def repo_store(repo_with_remote: Path) -> WorklogStore:
    """A store living in the repository's .worklog directory."""
    return WorklogStore(repo_with_remote / ".worklog" / "worklog.db")
