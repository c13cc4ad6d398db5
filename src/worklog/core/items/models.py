"""
Work item data models for worklog.

Defines the three replicated entities (work items, comments, dependency
edges) and the ephemeral conflict report produced by a merge pass.
Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WorkItemStatus(str, Enum):
    """Work item status values."""

    OPEN = "open"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    DELETED = "deleted"


class WorkItemPriority(str, Enum):
    """Work item priority levels (medium is the default)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkItem(BaseModel):
    """
    A work item replicated between worklog clones.

    `id` and `created_at` never change after creation. Deletion is a
    tombstone (`status == deleted`), the record itself is never removed.

    Example:
        >>> item = WorkItem(id="WI-0001", title="Fix login", priority="high")
        >>> item.model_dump(mode="json", by_alias=True)["parentId"] is None
        True
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., description="Stable work item identifier (e.g. 'WI-0LX3K9A2B')")
    title: str = Field(default="", description="Work item title")
    description: str = Field(default="", description="Longer description (may contain markdown)")
    status: WorkItemStatus = Field(default=WorkItemStatus.OPEN)
    priority: WorkItemPriority = Field(default=WorkItemPriority.MEDIUM)
    parent_id: str | None = Field(
        default=None,
        alias="parentId",
        description="Id of the parent work item (lookup relation, not ownership)",
    )
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")
    tags: list[str] = Field(default_factory=list)
    assignee: str = ""
    stage: str = ""

    # Interop metadata imported from other trackers
    issue_type: str = Field(default="", alias="issueType")
    created_by: str = Field(default="", alias="createdBy")
    deleted_by: str = Field(default="", alias="deletedBy")
    delete_reason: str = Field(default="", alias="deleteReason")

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store every timestamp as aware UTC so comparisons are well defined."""
        return _as_utc(v)

    @field_validator("assignee", "stage", "issue_type", "created_by", "deleted_by",
                     "delete_reason", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def is_deleted(self) -> bool:
        return self.status == WorkItemStatus.DELETED

    def to_record(self) -> dict[str, Any]:
        """Serialize to the wire representation (camelCase, JSON types)."""
        return self.model_dump(mode="json", by_alias=True)


class Comment(BaseModel):
    """A comment attached to a work item. Immutable once created."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    id: str
    work_item_id: str = Field(..., alias="workItemId")
    author: str = ""
    comment: str = ""
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    references: list[str] = Field(default_factory=list)

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DependencyEdge(BaseModel):
    """
    "from_id depends on to_id".

    Identity is the ordered pair (from_id, to_id); at most one edge exists
    per pair. Endpoints are not validated here.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    from_id: str = Field(..., alias="fromId")
    to_id: str = Field(..., alias="toId")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def key(self) -> tuple[str, str]:
        return (self.from_id, self.to_id)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConflictFieldDetail(BaseModel):
    """How a single differing field was resolved."""

    field: str
    local_value: Any = None
    remote_value: Any = None
    chosen_value: Any = None
    chosen_source: Literal["local", "remote", "merged"]
    reason: str


class ConflictDetail(BaseModel):
    """Field-level report for one work item touched by a merge pass."""

    item_id: str
    conflict_type: Literal["same-timestamp", "different-timestamp"]
    fields: list[ConflictFieldDetail] = Field(default_factory=list)
    local_updated_at: datetime | None = None
    remote_updated_at: datetime | None = None


class Snapshot(BaseModel):
    """Full serialized state of a replica at one point in time."""

    items: list[WorkItem] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    edges: list[DependencyEdge] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.items or self.comments or self.edges)
