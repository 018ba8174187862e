"""Result objects returned by batch, sync and reporting operations."""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ....config.constants import AssignableType
from .assignment import Assignment


@dataclass
class SyncResult:
    """Outcome of syncing one employee's assignments of one type."""

    assignable_type: AssignableType
    added: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)
    unchanged: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignable_type": self.assignable_type.value,
            "added": list(self.added),
            "removed": list(self.removed),
            "unchanged": list(self.unchanged),
            "failed": dict(self.failed),
        }


@dataclass
class BatchItem:
    """One entity in a batch outcome."""

    assignable_type: AssignableType
    assignable_id: int
    error: str = ""


@dataclass
class BatchResult:
    """Per-entity outcome of assigning or unassigning many entities."""

    success: List[BatchItem] = field(default_factory=list)
    failed: List[BatchItem] = field(default_factory=list)
    skipped: List[BatchItem] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        def items(entries: List[BatchItem]) -> List[Dict[str, Any]]:
            return [
                {"type": e.assignable_type.value, "id": e.assignable_id, **({"error": e.error} if e.error else {})}
                for e in entries
            ]

        return {
            "success": items(self.success),
            "failed": items(self.failed),
            "skipped": items(self.skipped),
        }


@dataclass
class BulkAssignOutcome:
    """Per-employee outcome of a bulk assignment.

    ``success`` maps employee ids to their batch result; ``errors`` maps
    employee ids to the reason the employee could not be processed.
    """

    success: Dict[int, BatchResult] = field(default_factory=dict)
    errors: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": {eid: result.to_dict() for eid, result in self.success.items()},
            "errors": dict(self.errors),
        }


@dataclass(frozen=True)
class AssignmentStatistics:
    """Aggregate counts over all assignments."""

    total: int
    active: int
    expired: int
    inactive: int
    by_type: Dict[str, int]

    @property
    def active_percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.active / self.total * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "expired": self.expired,
            "inactive": self.inactive,
            "by_type": dict(self.by_type),
            "active_percentage": self.active_percentage,
        }
