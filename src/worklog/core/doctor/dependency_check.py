"""Dependency edge integrity check."""

from __future__ import annotations

from collections.abc import Iterable

from worklog.core.doctor.models import DoctorFinding, DoctorSeverity
from worklog.core.items.models import DependencyEdge, WorkItem

CHECK_ID_MISSING_ENDPOINT = "dependency.missing-endpoint"
TYPE_MISSING_ENDPOINT = "missing-dependency-endpoint"


def validate_dependency_edges(
    items: Iterable[WorkItem],
    edges: Iterable[DependencyEdge],
) -> list[DoctorFinding]:
    """
    Report dependency edges whose endpoints are not known work items.

    Merging keeps dangling edges, so this runs as an explicit check rather
    than during sync.

    Args:
        items: All known work items (tombstones included).
        edges: All dependency edges.

    Returns:
        One error finding per dangling edge, in edge order.
    """
    item_ids = {item.id for item in items}
    findings: list[DoctorFinding] = []

    for edge in edges:
        missing_from = edge.from_id not in item_ids
        missing_to = edge.to_id not in item_ids
        if not missing_from and not missing_to:
            continue

        missing_parts = []
        if missing_from:
            missing_parts.append(f"fromId {edge.from_id}")
        if missing_to:
            missing_parts.append(f"toId {edge.to_id}")

        findings.append(
            DoctorFinding(
                check_id=CHECK_ID_MISSING_ENDPOINT,
                type=TYPE_MISSING_ENDPOINT,
                severity=DoctorSeverity.ERROR,
                item_id=edge.from_id if missing_from else edge.to_id,
                message=(
                    "Dependency edge references missing work item: "
                    f"{', '.join(missing_parts)}."
                ),
                context={
                    "from_id": edge.from_id,
                    "to_id": edge.to_id,
                    "missing_from": missing_from,
                    "missing_to": missing_to,
                    "created_at": edge.created_at.isoformat(),
                },
            )
        )

    return findings
