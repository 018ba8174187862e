"""Audit sink keeping events in memory."""

from typing import List

from ....config.constants import AuditEventType
from ..entities import AuditEvent


class MemoryAuditSink:
    """AuditSink that appends events to a list."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self.events if e.event == event_type]

    def clear(self) -> None:
        self.events.clear()
