"""
Merge engine for reconciling two replicas.

There is no common ancestor to diff against, so work items are merged
field by field with a heuristic:

- a value that differs from the field's default beats the default,
  whichever side is newer;
- when both sides hold different non-default values, the side with the
  later `updated_at` wins that field;
- when both sides share the same `updated_at` the tie is broken by
  comparing a canonical serialization of the two values, so independent
  replicas running the same merge pick the same value. The merged record
  gets a fresh `updated_at` so the next sync has a clear winner;
- `tags` is always the sorted union of both sides.

Comments and dependency edges are immutable facts and are merged as a
plain union keyed by identity.

Every function here is pure: inputs are never mutated and the output
order depends only on entity identities. An identity repeated within
one side keeps its first occurrence.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

from worklog.core.items.models import (
    Comment,
    ConflictDetail,
    ConflictFieldDetail,
    DependencyEdge,
    WorkItem,
    WorkItemPriority,
    WorkItemStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

# Fields reconciled independently; id, created_at and updated_at are handled separately.
MERGE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "priority",
    "parent_id",
    "tags",
    "assignee",
    "stage",
    "issue_type",
    "created_by",
    "deleted_by",
    "delete_reason",
)

# Non-empty defaults; every other field defaults to None, "" or [].
FIELD_DEFAULTS: dict[str, Any] = {
    "status": WorkItemStatus.OPEN,
    "priority": WorkItemPriority.MEDIUM,
}

# Minimum step when bumping updated_at, survives millisecond serializers.
TIMESTAMP_BUMP = timedelta(milliseconds=1)


@dataclass(frozen=True)
class MergeResult(Generic[T]):
    """Merged collection plus the human-readable and structured conflict report."""

    merged: list[T]
    conflicts: list[str] = field(default_factory=list)
    conflict_details: list[ConflictDetail] = field(default_factory=list)


def _plain(value: Any) -> Any:
    """Convert a field value to its JSON form."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return value


def is_default_value(value: Any, field_name: str) -> bool:
    """
    Check whether a value is the "unset" value for a field.

    Args:
        value: Field value.
        field_name: Python field name (e.g. "status", "parent_id").

    Returns:
        True for None, "", empty collections, and the per-field defaults
        in FIELD_DEFAULTS.
    """
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple, set)) and len(value) == 0:
        return True
    default = FIELD_DEFAULTS.get(field_name)
    return default is not None and _plain(value) == _plain(default)


def stable_value_key(value: Any) -> str:
    """Canonical, order-insensitive serialization of a single field value."""
    if value is None:
        return "n"
    if isinstance(value, (list, tuple, set)):
        return "a:" + json.dumps(sorted(str(_plain(v)) for v in value), separators=(",", ":"))
    return "v:" + json.dumps(_plain(value), separators=(",", ":"), ensure_ascii=False)


def stable_item_key(item: WorkItem) -> str:
    """Canonical serialization of a whole work item; tags are compared as a set."""
    record = item.to_record()
    record["tags"] = sorted(str(t) for t in record.get("tags") or [])
    return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def first_by_key(entries: Iterable[T], key: Callable[[T], K]) -> dict[K, T]:
    """Index entries by key, keeping the first occurrence of a repeated key."""
    indexed: dict[K, T] = {}
    for entry in entries:
        entry_key = key(entry)
        if entry_key in indexed:
            logger.debug("Ignoring duplicate entry for %s", entry_key)
            continue
        indexed[entry_key] = entry
    return indexed


def merge_tags(a: Iterable[str] | None, b: Iterable[str] | None) -> list[str]:
    """Sorted union of two tag collections."""
    return sorted({str(t) for t in (a or [])} | {str(t) for t in (b or [])})


def _iso(value: datetime) -> str:
    return value.isoformat()


def _merge_pair(
    local: WorkItem,
    remote: WorkItem,
    now: datetime | None,
) -> tuple[WorkItem, list[str], ConflictDetail | None]:
    """Field-level merge of two differing copies of the same work item."""
    same_timestamp = local.updated_at == remote.updated_at
    remote_newer = remote.updated_at > local.updated_at

    updates: dict[str, Any] = {}
    merged_fields: list[str] = []
    conflicted_fields: list[str] = []
    field_details: list[ConflictFieldDetail] = []

    def record(name: str, chosen: Any, source: str, reason: str) -> None:
        field_details.append(
            ConflictFieldDetail(
                field=name,
                local_value=_plain(getattr(local, name)),
                remote_value=_plain(getattr(remote, name)),
                chosen_value=_plain(chosen),
                chosen_source=source,
                reason=reason,
            )
        )

    for name in MERGE_FIELDS:
        local_value = getattr(local, name)
        remote_value = getattr(remote, name)

        if name == "tags":
            union = merge_tags(local_value, remote_value)
            updates["tags"] = union
            if set(local_value) != set(remote_value):
                merged_fields.append("tags (union)")
                record("tags", union, "merged", "union of both tag sets")
            continue

        if stable_value_key(local_value) == stable_value_key(remote_value):
            continue

        local_is_default = is_default_value(local_value, name)
        remote_is_default = is_default_value(remote_value, name)

        if local_is_default and not remote_is_default:
            updates[name] = remote_value
            merged_fields.append(f"{name} (from remote)")
            record(name, remote_value, "remote", "remote has value, local is default")
        elif remote_is_default and not local_is_default:
            merged_fields.append(f"{name} (from local)")
            record(name, local_value, "local", "local has value, remote is default")
        elif same_timestamp:
            if stable_value_key(remote_value) > stable_value_key(local_value):
                updates[name] = remote_value
                merged_fields.append(f"{name} (tie-break: remote)")
                record(name, remote_value, "remote", "deterministic tie-breaker (lexicographic)")
            else:
                merged_fields.append(f"{name} (tie-break: local)")
                record(name, local_value, "local", "deterministic tie-breaker (lexicographic)")
        elif remote_newer:
            updates[name] = remote_value
            conflicted_fields.append(name)
            record(name, remote_value, "remote", f"remote is newer ({_iso(remote.updated_at)})")
        else:
            conflicted_fields.append(name)
            record(name, local_value, "local", f"local is newer ({_iso(local.updated_at)})")

    conflicts: list[str] = []
    if same_timestamp:
        # Bump so the next sync has an unambiguous winner.
        updates["updated_at"] = max(now or utc_now(), local.updated_at + TIMESTAMP_BUMP)
        conflicts.append(
            f"{local.id}: Same updatedAt but different content - "
            "merged deterministically and bumped updatedAt"
        )
    else:
        updates["updated_at"] = max(local.updated_at, remote.updated_at)
        if conflicted_fields:
            winner, loser = ("remote", "local") if remote_newer else ("local", "remote")
            winner_ts = remote.updated_at if remote_newer else local.updated_at
            loser_ts = local.updated_at if remote_newer else remote.updated_at
            conflicts.append(
                f"{local.id}: Conflicting fields [{', '.join(conflicted_fields)}] resolved "
                f"using {winner} values ({winner}: {_iso(winner_ts)}, {loser}: {_iso(loser_ts)})"
            )
    if merged_fields:
        conflicts.append(f"{local.id}: Merged fields [{', '.join(merged_fields)}]")

    updates["created_at"] = local.created_at
    merged = local.model_copy(update=updates, deep=True)

    detail = None
    if field_details:
        detail = ConflictDetail(
            item_id=local.id,
            conflict_type="same-timestamp" if same_timestamp else "different-timestamp",
            fields=field_details,
            local_updated_at=local.updated_at,
            remote_updated_at=remote.updated_at,
        )
    return merged, conflicts, detail


def merge_work_items(
    local: Sequence[WorkItem],
    remote: Sequence[WorkItem],
    *,
    now: datetime | None = None,
) -> MergeResult[WorkItem]:
    """
    Merge two replicas' work items with field-level conflict resolution.

    Args:
        local: Work items from this replica.
        remote: Work items decoded from the remote snapshot.
        now: Clock value used when bumping updated_at on a same-timestamp
            merge. Defaults to the current UTC time.

    Returns:
        MergeResult with local ∪ remote ordered by id, plus conflicts.
    """
    local_map = first_by_key(local, lambda i: i.id)
    remote_map = first_by_key(remote, lambda i: i.id)
    merged_map: dict[str, WorkItem] = dict(local_map)
    conflicts: list[str] = []
    conflict_details: list[ConflictDetail] = []

    for remote_item in (remote_map[item_id] for item_id in sorted(remote_map)):
        local_item = local_map.get(remote_item.id)
        if local_item is None:
            merged_map[remote_item.id] = remote_item
            continue
        if stable_item_key(local_item) == stable_item_key(remote_item):
            continue

        merged, item_conflicts, detail = _merge_pair(local_item, remote_item, now)
        merged_map[remote_item.id] = merged
        conflicts.extend(item_conflicts)
        if detail is not None:
            conflict_details.append(detail)
            logger.debug(
                "Merged %s (%s): %d field(s) differed",
                detail.item_id,
                detail.conflict_type,
                len(detail.fields),
            )

    return MergeResult(
        merged=[merged_map[item_id] for item_id in sorted(merged_map)],
        conflicts=conflicts,
        conflict_details=conflict_details,
    )


def merge_comments(local: Sequence[Comment], remote: Sequence[Comment]) -> MergeResult[Comment]:
    """Union of comments keyed by id; the local copy is kept when both sides have one."""
    merged_map = first_by_key(remote, lambda c: c.id)
    merged_map.update(first_by_key(local, lambda c: c.id))
    return MergeResult(merged=[merged_map[cid] for cid in sorted(merged_map)])


def merge_dependency_edges(
    local: Sequence[DependencyEdge],
    remote: Sequence[DependencyEdge],
) -> MergeResult[DependencyEdge]:
    """
    Union of dependency edges keyed by (from_id, to_id).

    Endpoints are not checked against known work items; see
    worklog.core.doctor.dependency_check for that.
    """
    merged_map = first_by_key(remote, lambda e: e.key)
    merged_map.update(first_by_key(local, lambda e: e.key))
    return MergeResult(merged=[merged_map[key] for key in sorted(merged_map)])
