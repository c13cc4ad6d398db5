"""
Doctor finding models.

Findings are produced by integrity checks over the local store. They are
reports only; checks never modify data.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DoctorSeverity(str, Enum):
    """Severity levels for doctor findings."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DoctorFinding(BaseModel):
    """A single problem detected by an integrity check."""

    check_id: str = Field(description="Stable identifier of the check")
    type: str
    severity: DoctorSeverity
    item_id: str
    message: str
    proposed_fix: str | None = None
    safe: bool = Field(default=False, description="Whether the fix can be applied automatically")
    context: dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.message}"
