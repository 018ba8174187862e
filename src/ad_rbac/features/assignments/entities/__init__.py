"""Assignment entities and protocols."""

from .assignment import Assignment
from .history import AssignmentHistory
from .protocols import AssignmentHistoryRepository, AssignmentRepository
from .results import (
    AssignmentStatistics,
    BatchItem,
    BatchResult,
    BulkAssignOutcome,
    SyncResult,
)

__all__ = [
    "Assignment",
    "AssignmentHistory",
    "AssignmentHistoryRepository",
    "AssignmentRepository",
    "AssignmentStatistics",
    "BatchItem",
    "BatchResult",
    "BulkAssignOutcome",
    "SyncResult",
]
