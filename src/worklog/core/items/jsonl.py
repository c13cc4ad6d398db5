"""
JSONL snapshot codec.

A snapshot is one JSON record per line, tagged with its entity type:

    {"type": "workitem", "data": {"id": "WI-1", "title": "...", ...}}
    {"type": "comment", "data": {"id": "WI-C1", "workItemId": "WI-1", ...}}
    {"type": "dependency", "data": {"fromId": "WI-2", "toId": "WI-1", ...}}

The format is git-friendly: each entity sits on its own line, and records
are written in identity order so equal states encode to identical bytes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from worklog.core.items.models import Comment, DependencyEdge, Snapshot, WorkItem

logger = logging.getLogger(__name__)

RECORD_WORKITEM = "workitem"
RECORD_COMMENT = "comment"
RECORD_DEPENDENCY = "dependency"


class SnapshotCorruptedError(Exception):
    """Raised when snapshot content is malformed."""

    def __init__(self, message: str, line_num: int | None = None):
        self.line_num = line_num
        super().__init__(message)


def _decode_line(line: str, line_num: int) -> dict[str, Any]:
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise SnapshotCorruptedError(
            f"Line {line_num}: invalid JSON - {e}", line_num=line_num
        ) from e
    if not isinstance(record, dict):
        type_name = type(record).__name__
        raise SnapshotCorruptedError(
            f"Line {line_num}: expected JSON object, got {type_name}", line_num=line_num
        )
    return record


def _item_from_data(data: dict[str, Any]) -> WorkItem:
    # Older snapshots predate these fields
    data.setdefault("assignee", "")
    data.setdefault("stage", "")
    return WorkItem.model_validate(data)


def decode_snapshot(content: str | bytes) -> Snapshot:
    """
    Decode snapshot content into its three entity collections.

    Args:
        content: Raw snapshot bytes or text.

    Returns:
        Snapshot with items, comments and edges in file order.

    Raises:
        SnapshotCorruptedError: If a line is not valid JSON or fails validation.
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SnapshotCorruptedError(f"Snapshot is not valid UTF-8: {e}") from e

    items: list[WorkItem] = []
    comments: list[Comment] = []
    edges: list[DependencyEdge] = []
    legacy_lines = 0

    for line_num, raw in enumerate(content.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        record = _decode_line(line, line_num)
        record_type = record.get("type")
        data = record.get("data")

        try:
            if record_type == RECORD_WORKITEM and isinstance(data, dict):
                items.append(_item_from_data(data))
            elif record_type == RECORD_COMMENT and isinstance(data, dict):
                comments.append(Comment.model_validate(data))
            elif record_type == RECORD_DEPENDENCY and isinstance(data, dict):
                edges.append(DependencyEdge.model_validate(data))
            elif record_type is None:
                # Old format: a bare work item object
                legacy_lines += 1
                items.append(_item_from_data(record))
            else:
                raise SnapshotCorruptedError(
                    f"Line {line_num}: unknown record type {record_type!r}",
                    line_num=line_num,
                )
        except ValidationError as e:
            raise SnapshotCorruptedError(
                f"Line {line_num}: invalid {record_type or RECORD_WORKITEM} record - {e}",
                line_num=line_num,
            ) from e

    if legacy_lines:
        logger.warning(
            "Found %d entries without a type field, assuming work items. "
            "Re-export the snapshot to migrate to the tagged format.",
            legacy_lines,
        )

    return Snapshot(items=items, comments=comments, edges=edges)


def encode_snapshot(
    items: Iterable[WorkItem],
    comments: Iterable[Comment],
    edges: Iterable[DependencyEdge] = (),
) -> str:
    """
    Encode entity collections as snapshot text.

    Items and comments are ordered by id and edges by (from_id, to_id).
    """
    lines: list[str] = []
    for item in sorted(items, key=lambda i: i.id):
        lines.append(_dumps({"type": RECORD_WORKITEM, "data": item.to_record()}))
    for comment in sorted(comments, key=lambda c: c.id):
        lines.append(_dumps({"type": RECORD_COMMENT, "data": comment.to_record()}))
    for edge in sorted(edges, key=lambda e: e.key):
        lines.append(_dumps({"type": RECORD_DEPENDENCY, "data": edge.to_record()}))
    return "\n".join(lines) + "\n" if lines else ""


def _dumps(record: dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False)


def export_to_jsonl(
    items: Iterable[WorkItem],
    comments: Iterable[Comment],
    edges: Iterable[DependencyEdge],
    path: Path,
) -> None:
    """
    Write a snapshot file atomically.

    Writes to a temp file in the same directory and renames it over the
    target, so readers never observe a half-written snapshot.
    """
    content = encode_snapshot(items, comments, edges)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".worklog-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        os.replace(temp_path, path)
    except OSError:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
    logger.debug("Exported snapshot to %s", path)


def import_from_jsonl(path: Path) -> Snapshot:
    """
    Read and decode a snapshot file.

    Raises:
        FileNotFoundError: If the file does not exist.
        SnapshotCorruptedError: If the content is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")
    return decode_snapshot(path.read_bytes())
