"""
Worklog - Git-backed work-item tracker.

Every clone of a repository keeps its own copy of work items, comments,
and dependency edges, and reconciles with peers through the git remote.
"""

__version__ = "0.4.0"

# Re-export core models for convenience
from worklog.core.items.models import Comment, DependencyEdge, WorkItem, WorkItemStatus

__all__ = ["Comment", "DependencyEdge", "WorkItem", "WorkItemStatus", "__version__"]
