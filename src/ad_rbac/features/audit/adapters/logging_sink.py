"""Audit sink writing one structured log line per event."""

import json
import logging

from ..entities import AuditEvent

logger = logging.getLogger("ad_rbac.audit")


class LoggingAuditSink:
    """AuditSink that logs events as JSON at INFO."""

    def __init__(self, log: logging.Logger = logger):
        self._log = log

    async def record(self, event: AuditEvent) -> None:
        self._log.info(json.dumps(event.to_dict(), default=str, sort_keys=True))
