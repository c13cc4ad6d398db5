"""
Integrity checks over the local store.

Example:
    >>> from worklog.core.doctor import validate_dependency_edges
    >>> findings = validate_dependency_edges(store.get_all_items(), store.get_all_dependency_edges())
"""

from worklog.core.doctor.dependency_check import (
    CHECK_ID_MISSING_ENDPOINT,
    validate_dependency_edges,
)
from worklog.core.doctor.models import DoctorFinding, DoctorSeverity

__all__ = [
    "CHECK_ID_MISSING_ENDPOINT",
    "DoctorFinding",
    "DoctorSeverity",
    "validate_dependency_edges",
]
