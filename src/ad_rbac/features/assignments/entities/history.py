"""Append-only history of assignment transitions."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ....config.constants import HistoryAction


@dataclass(frozen=True)
class AssignmentHistory:
    """One recorded transition of an assignment."""

    id: Optional[int]
    assignment_id: int
    action: HistoryAction
    changes: Dict[str, Any] = field(default_factory=dict)
    changed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.action, HistoryAction):
            object.__setattr__(self, "action", HistoryAction(self.action))
