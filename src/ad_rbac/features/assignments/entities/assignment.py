"""Assignment domain entity.

An assignment is the fact that an employee holds a group, role or
permission. Rows are never deleted: revoking or expiring flips
``is_active`` and leaves the history intact.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ....config.constants import AssignableType
from ....core.value_objects import AssignableRef
from ....utils.datetime import ensure_utc


@dataclass
class Assignment:
    """An employee's grant of one assignable entity."""

    id: Optional[int]
    employee_id: int
    assignable_type: AssignableType
    assignable_id: int
    assignment_reason: Optional[str] = None
    assigned_by: Optional[int] = None
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.assignable_type, AssignableType):
            self.assignable_type = AssignableType(self.assignable_type)
        self.expires_at = ensure_utc(self.expires_at)

    @property
    def ref(self) -> AssignableRef:
        return AssignableRef(self.assignable_type, self.assignable_id)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_current(self, now: datetime) -> bool:
        """Active and not expired at ``now``."""
        return self.is_active and not self.is_expired(now)

    def days_until_expiry(self, now: datetime) -> Optional[int]:
        if self.expires_at is None:
            return None
        return max((self.expires_at - now).days, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "assignable_type": self.assignable_type.value,
            "assignable_id": self.assignable_id,
            "assignment_reason": self.assignment_reason,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
        }
