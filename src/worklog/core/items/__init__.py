"""
Work item entities, snapshot codec, and the local store.

Example:
    >>> from worklog.core.items import WorklogStore, decode_snapshot
    >>> store = WorklogStore(Path(".worklog/worklog.db"))
    >>> snapshot = decode_snapshot(Path(".worklog/worklog-data.jsonl").read_bytes())
"""

from worklog.core.items.jsonl import (
    SnapshotCorruptedError,
    decode_snapshot,
    encode_snapshot,
    export_to_jsonl,
    import_from_jsonl,
)
from worklog.core.items.models import (
    Comment,
    ConflictDetail,
    ConflictFieldDetail,
    DependencyEdge,
    Snapshot,
    WorkItem,
    WorkItemPriority,
    WorkItemStatus,
)
from worklog.core.items.store import ItemNotFoundError, ItemTreeNode, WorklogStore

__all__ = [
    "Comment",
    "ConflictDetail",
    "ConflictFieldDetail",
    "DependencyEdge",
    "ItemNotFoundError",
    "ItemTreeNode",
    "Snapshot",
    "SnapshotCorruptedError",
    "WorkItem",
    "WorkItemPriority",
    "WorkItemStatus",
    "WorklogStore",
    "decode_snapshot",
    "encode_snapshot",
    "export_to_jsonl",
    "import_from_jsonl",
]
