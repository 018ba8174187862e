"""Tests for audit sinks and the recorder."""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from ad_rbac.config.constants import AuditEventType
from ad_rbac.features.audit.adapters import LoggingAuditSink, MemoryAuditSink
from ad_rbac.features.audit.entities import AuditEvent
from ad_rbac.features.audit.recorder import AuditRecorder


class TestAuditRecorder:

    @pytest.mark.asyncio
    async def test_records_event(self):
        sink = MemoryAuditSink()
        recorder = AuditRecorder(sink)

        await recorder.record(AuditEventType.ROLE_CREATED, "role", 5, actor_id=1, payload={"slug": "viewer"})

        [event] = sink.events
        assert event.event == AuditEventType.ROLE_CREATED
        assert event.subject_id == 5
        assert event.payload == {"slug": "viewer"}

    @pytest.mark.asyncio
    async def test_no_sink_is_noop(self):
        await AuditRecorder(None).record(AuditEventType.ROLE_CREATED, "role", 5)

    @pytest.mark.asyncio
    async def test_sink_failure_is_logged_not_raised(self, caplog):
        sink = AsyncMock()
        sink.record = AsyncMock(side_effect=RuntimeError("disk full"))

        with caplog.at_level(logging.ERROR, logger="ad_rbac.features.audit.recorder"):
            await AuditRecorder(sink).record(AuditEventType.GROUP_DELETED, "group", 2)

        assert "disk full" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_undo_assignment(self, rbac, alice, catalog_seed):
        rbac.assignments.audit = AuditRecorder(AsyncMock(record=AsyncMock(side_effect=RuntimeError("boom"))))

        assignment = await rbac.assignments.assign(alice, catalog_seed["viewer"])

        assert [a.id for a in await rbac.assignments.list_assignments(alice)] == [assignment.id]


class TestLoggingAuditSink:

    @pytest.mark.asyncio
    async def test_writes_json_line(self, caplog):
        event = AuditEvent(AuditEventType.EMPLOYEE_LOGGED_IN, "employee", 9, actor_id=9, payload={"username": "alice"})

        with caplog.at_level(logging.INFO, logger="ad_rbac.audit"):
            await LoggingAuditSink().record(event)

        line = json.loads(caplog.records[-1].getMessage())
        assert line["event"] == "employee.logged_in"
        assert line["payload"] == {"username": "alice"}
