"""Audit events and the sink protocol."""

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ....config.constants import AuditEventType
from ....utils.datetime import utc_now


@dataclass(frozen=True)
class AuditEvent:
    """A committed mutation worth recording."""

    event: AuditEventType
    subject_type: str
    subject_id: Optional[int]
    actor_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.value,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


@runtime_checkable
class AuditSink(Protocol):
    """Destination for audit events."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        ...
