"""
Local work item store backed by SQLite.

Each replica keeps its materialized state in `.worklog/worklog.db`. The
store is the only place new identities are created; sync only reads
everything out and bulk-imports merged results back in.

Usage:
    store = WorklogStore(Path(".worklog/worklog.db"), prefix="WI")
    item = store.create_item("Fix login redirect", priority="high")
    store.add_dependency(item.id, "WI-0LX3K9A2B1C2D3E")
    store.set_auto_sync(True, callback=lambda: run_sync())
"""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import string
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from worklog.core.items.models import (
    Comment,
    DependencyEdge,
    WorkItem,
    WorkItemStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
UNIQUE_TIME_LENGTH = 9
UNIQUE_RANDOM_LENGTH = 7
MAX_ID_GENERATION_ATTEMPTS = 10

SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    parent_id TEXT,
    status TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_items_parent_id ON items(parent_id);

CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    work_item_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_comments_work_item_id ON comments(work_item_id);

CREATE TABLE IF NOT EXISTS dependency_edges (
    from_id TEXT NOT NULL,
    to_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (from_id, to_id)
);
CREATE INDEX IF NOT EXISTS idx_dependency_edges_to_id ON dependency_edges(to_id);
"""


class ItemNotFoundError(KeyError):
    """Raised when a work item id is not in the store."""


@dataclass
class ItemTreeNode:
    """A work item with its children resolved through parent_id."""

    item: WorkItem
    children: list[ItemTreeNode] = field(default_factory=list)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


class WorklogStore:
    """
    SQLite persistence for work items, comments and dependency edges.

    Every mutating operation fires the auto-sync callback while auto-sync
    is enabled. Bulk importers (the sync orchestrator) switch it off for
    the duration of an import.
    """

    def __init__(self, db_path: Path, prefix: str = "WI") -> None:
        self.db_path = db_path
        self.prefix = prefix
        self._auto_sync = False
        self._auto_sync_callback: Callable[[], None] | None = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, committing on success and rolling back on error."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Auto-sync hook
    # ------------------------------------------------------------------

    @property
    def auto_sync_enabled(self) -> bool:
        return self._auto_sync

    def set_auto_sync(self, enabled: bool, callback: Callable[[], None] | None = None) -> None:
        """
        Enable or disable the auto-replication hook.

        Args:
            enabled: Whether mutations should trigger the callback.
            callback: Replaces the registered callback when given.
        """
        self._auto_sync = enabled
        if callback is not None:
            self._auto_sync_callback = callback

    def _notify_change(self) -> None:
        if self._auto_sync and self._auto_sync_callback is not None:
            logger.debug("Store changed, triggering auto-sync")
            self._auto_sync_callback()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all_items(self) -> list[WorkItem]:
        with self._connect() as conn:
            rows = conn.execute("SELECT data FROM items ORDER BY id").fetchall()
        return [WorkItem.model_validate_json(row["data"]) for row in rows]

    def get_item(self, item_id: str) -> WorkItem | None:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM items WHERE id = ?", (item_id,)).fetchone()
        return WorkItem.model_validate_json(row["data"]) if row else None

    def get_children(self, parent_id: str) -> list[WorkItem]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM items WHERE parent_id = ? ORDER BY id", (parent_id,)
            ).fetchall()
        return [WorkItem.model_validate_json(row["data"]) for row in rows]

    def get_all_comments(self) -> list[Comment]:
        with self._connect() as conn:
            rows = conn.execute("SELECT data FROM comments ORDER BY id").fetchall()
        return [Comment.model_validate_json(row["data"]) for row in rows]

    def get_comments_for(self, work_item_id: str) -> list[Comment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM comments WHERE work_item_id = ? ORDER BY created_at DESC",
                (work_item_id,),
            ).fetchall()
        return [Comment.model_validate_json(row["data"]) for row in rows]

    def get_all_dependency_edges(self) -> list[DependencyEdge]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT from_id, to_id, created_at FROM dependency_edges ORDER BY from_id, to_id"
            ).fetchall()
        return [
            DependencyEdge(from_id=r["from_id"], to_id=r["to_id"], created_at=r["created_at"])
            for r in rows
        ]

    def build_item_tree(self) -> list[ItemTreeNode]:
        """
        Build the parent/child forest from parent_id references.

        Items whose parent is unknown are roots. Items caught in a parent
        cycle are emitted once, as roots, with the cycle broken where the
        walk first revisits an item.
        """
        items = {item.id: item for item in self.get_all_items()}
        children: dict[str, list[str]] = {}
        for item in items.values():
            if item.parent_id is not None and item.parent_id in items:
                children.setdefault(item.parent_id, []).append(item.id)

        visited: set[str] = set()

        def build(item_id: str) -> ItemTreeNode:
            visited.add(item_id)
            node = ItemTreeNode(item=items[item_id])
            for child_id in sorted(children.get(item_id, [])):
                if child_id not in visited:
                    node.children.append(build(child_id))
            return node

        roots: list[ItemTreeNode] = []
        for item_id in sorted(items):
            item = items[item_id]
            if item.parent_id is None or item.parent_id not in items:
                roots.append(build(item_id))
        for item_id in sorted(items):
            if item_id not in visited:
                logger.warning("Work item %s is part of a parent cycle", item_id)
                roots.append(build(item_id))
        return roots

    # ------------------------------------------------------------------
    # Local operations
    # ------------------------------------------------------------------

    def _generate_unique_id(self) -> str:
        time_part = _to_base36(int(time.time() * 1000)).rjust(UNIQUE_TIME_LENGTH, "0")
        random_part = "".join(secrets.choice(_BASE36) for _ in range(UNIQUE_RANDOM_LENGTH))
        return time_part[-UNIQUE_TIME_LENGTH:] + random_part

    def _generate_id(self, exists: Callable[[str], bool], infix: str = "") -> str:
        for _ in range(MAX_ID_GENERATION_ATTEMPTS):
            candidate = f"{self.prefix}-{infix}{self._generate_unique_id()}"
            if not exists(candidate):
                return candidate
        raise RuntimeError("Unable to generate a unique id")

    def _comment_exists(self, comment_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM comments WHERE id = ?", (comment_id,)).fetchone()
        return row is not None

    def _save_item(self, conn: sqlite3.Connection, item: WorkItem) -> None:
        conn.execute(
            """
            INSERT INTO items (id, parent_id, status, updated_at, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                parent_id = excluded.parent_id,
                status = excluded.status,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            (
                item.id,
                item.parent_id,
                item.status.value,
                item.updated_at.isoformat(),
                json.dumps(item.to_record(), ensure_ascii=False),
            ),
        )

    def _save_comment(self, conn: sqlite3.Connection, comment: Comment) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO comments (id, work_item_id, created_at, data) "
            "VALUES (?, ?, ?, ?)",
            (
                comment.id,
                comment.work_item_id,
                comment.created_at.isoformat(),
                json.dumps(comment.to_record(), ensure_ascii=False),
            ),
        )

    def _save_edge(self, conn: sqlite3.Connection, edge: DependencyEdge) -> None:
        conn.execute(
            """
            INSERT INTO dependency_edges (from_id, to_id, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(from_id, to_id) DO UPDATE SET created_at = excluded.created_at
            """,
            (edge.from_id, edge.to_id, edge.created_at.isoformat()),
        )

    def create_item(self, title: str, **fields: Any) -> WorkItem:
        """
        Create a new work item with a freshly generated id.

        Args:
            title: Work item title.
            **fields: Any other WorkItem field (snake_case names).
        """
        now = utc_now()
        item_id = self._generate_id(lambda candidate: self.get_item(candidate) is not None)
        item = WorkItem.model_validate(
            {"id": item_id, "title": title, "created_at": now, "updated_at": now, **fields}
        )
        with self._connect() as conn:
            self._save_item(conn, item)
        logger.info("Created work item %s", item.id)
        self._notify_change()
        return item

    def update_item(self, item_id: str, **changes: Any) -> WorkItem:
        """
        Apply field changes to an existing item and advance updated_at.

        Raises:
            ItemNotFoundError: If the item does not exist.
            ValueError: If `id` or `created_at` are part of the changes.
        """
        immutable = {"id", "created_at"} & changes.keys()
        if immutable:
            raise ValueError(f"Cannot change immutable fields: {', '.join(sorted(immutable))}")

        current = self.get_item(item_id)
        if current is None:
            raise ItemNotFoundError(item_id)

        updated_at = max(utc_now(), current.updated_at + timedelta(microseconds=1))
        data = {**current.model_dump(), **changes, "updated_at": updated_at}
        item = WorkItem.model_validate(data)
        with self._connect() as conn:
            self._save_item(conn, item)
        self._notify_change()
        return item

    def delete_item(self, item_id: str, deleted_by: str = "", reason: str = "") -> WorkItem:
        """Tombstone a work item. The record stays in the store."""
        return self.update_item(
            item_id,
            status=WorkItemStatus.DELETED,
            deleted_by=deleted_by,
            delete_reason=reason,
        )

    def add_comment(
        self,
        work_item_id: str,
        author: str,
        comment: str,
        references: Iterable[str] | None = None,
    ) -> Comment:
        if self.get_item(work_item_id) is None:
            raise ItemNotFoundError(work_item_id)
        comment_id = self._generate_id(self._comment_exists, infix="C")
        created = Comment(
            id=comment_id,
            work_item_id=work_item_id,
            author=author,
            comment=comment,
            references=list(references or []),
        )
        with self._connect() as conn:
            self._save_comment(conn, created)
        self._notify_change()
        return created

    def add_dependency(self, from_id: str, to_id: str) -> DependencyEdge:
        """Record that `from_id` depends on `to_id`. Adding an existing edge is a no-op."""
        for item_id in (from_id, to_id):
            if self.get_item(item_id) is None:
                raise ItemNotFoundError(item_id)
        if from_id == to_id:
            raise ValueError("A work item cannot depend on itself")

        with self._connect() as conn:
            row = conn.execute(
                "SELECT created_at FROM dependency_edges WHERE from_id = ? AND to_id = ?",
                (from_id, to_id),
            ).fetchone()
            if row is not None:
                return DependencyEdge(from_id=from_id, to_id=to_id, created_at=row["created_at"])
            edge = DependencyEdge(from_id=from_id, to_id=to_id)
            self._save_edge(conn, edge)
        self._notify_change()
        return edge

    def remove_dependency(self, from_id: str, to_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM dependency_edges WHERE from_id = ? AND to_id = ?", (from_id, to_id)
            )
            removed = cursor.rowcount > 0
        if removed:
            self._notify_change()
        return removed

    # ------------------------------------------------------------------
    # Bulk import
    # ------------------------------------------------------------------

    def import_items(self, items: Iterable[WorkItem], edges: Iterable[DependencyEdge]) -> None:
        """Replace all work items and dependency edges in one transaction."""
        with self._connect() as conn:
            conn.execute("DELETE FROM items")
            conn.execute("DELETE FROM dependency_edges")
            for item in items:
                self._save_item(conn, item)
            for edge in edges:
                self._save_edge(conn, edge)
        self._notify_change()

    def import_comments(self, comments: Iterable[Comment]) -> None:
        """Replace all comments in one transaction."""
        with self._connect() as conn:
            conn.execute("DELETE FROM comments")
            for comment in comments:
                self._save_comment(conn, comment)
        self._notify_change()

