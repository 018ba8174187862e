"""Helper that records audit events without letting failures escape."""

import logging
from typing import Any, Dict, Optional

from ...config.constants import AuditEventType
from .entities import AuditEvent, AuditSink

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Wraps an AuditSink; failed writes are logged at ERROR and swallowed.

    Events are recorded after commit, so a failing sink cannot undo the
    mutation it describes.
    """

    def __init__(self, sink: Optional[AuditSink] = None):
        self._sink = sink

    async def record(
        self,
        event: AuditEventType,
        subject_type: str,
        subject_id: Optional[int],
        actor_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._sink is None:
            return
        audit_event = AuditEvent(
            event=event,
            subject_type=subject_type,
            subject_id=subject_id,
            actor_id=actor_id,
            payload=payload or {},
        )
        try:
            await self._sink.record(audit_event)
        except Exception as e:
            logger.error(f"Failed to record audit event {event.value} for {subject_type} {subject_id}: {e}")
