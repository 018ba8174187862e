"""Employee lifecycle: HR sync, deactivation and reactivation."""

import logging
from datetime import datetime
from typing import Callable, Optional

from ....config.constants import AuditEventType
from ....core.exceptions import EmployeeNotFound
from ....utils.datetime import utc_now
from ...audit.entities import AuditSink
from ...audit.recorder import AuditRecorder
from ...permissions.services.permission_resolver import PermissionResolver
from ..entities import Employee, EmployeeRepository, EmployeeSource

logger = logging.getLogger(__name__)


class EmployeeService:
    """Keeps local employee rows in line with the HR system."""

    def __init__(
        self,
        employee_repository: EmployeeRepository,
        employee_source: Optional[EmployeeSource],
        resolver: PermissionResolver,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.employees = employee_repository
        self.source = employee_source
        self.resolver = resolver
        self.audit = AuditRecorder(audit_sink)
        self.clock = clock

    async def get(self, employee_id: int) -> Employee:
        employee = await self.employees.get_by_id(employee_id)
        if employee is None:
            raise EmployeeNotFound(employee_id)
        return employee

    async def sync_from_source(self, username: str) -> Employee:
        """Fetch the HR record for ``username`` and create or update the employee.

        Raises EmployeeNotFound when the HR system has no such employee and
        no source is configured either.
        """
        if self.source is None:
            existing = await self.employees.get_by_username(username)
            if existing is None:
                raise EmployeeNotFound(username)
            return existing

        record = await self.source.fetch(username)
        if record is None:
            raise EmployeeNotFound(username, f"Employee '{username}' not found in HR system")

        now = self.clock()
        employee = await self.employees.get_by_username(username)
        if employee is None:
            employee = Employee(id=None, username=username, synced_at=now)
            employee.apply_record(record)
            employee = await self.employees.create(employee)
            logger.info(f"Created employee {employee.username} (id={employee.id}) from HR record")
            created = True
        else:
            employee.apply_record(record)
            employee.synced_at = now
            employee = await self.employees.update(employee)
            logger.debug(f"Synced employee {employee.username} (id={employee.id}) from HR record")
            created = False

        await self.audit.record(
            AuditEventType.EMPLOYEE_SYNCED, "employee", employee.id, None,
            {"username": employee.username, "created": created},
        )
        return employee

    async def deactivate(self, employee_id: int, actor_id: Optional[int] = None) -> Employee:
        """Mark the employee inactive. Assignments are kept for history."""
        employee = await self.get(employee_id)
        if not employee.is_active and employee.is_deleted:
            return employee
        employee.is_active = False
        employee.deleted_at = self.clock()
        employee = await self.employees.update(employee)
        await self.resolver.invalidate(employee.id)
        logger.info(f"Deactivated employee {employee.username} (id={employee.id})")
        await self.audit.record(
            AuditEventType.EMPLOYEE_DEACTIVATED, "employee", employee.id, actor_id, {"username": employee.username}
        )
        return employee

    async def reactivate(self, employee_id: int, actor_id: Optional[int] = None) -> Employee:
        employee = await self.get(employee_id)
        if employee.is_active and not employee.is_deleted:
            return employee
        employee.is_active = True
        employee.deleted_at = None
        employee = await self.employees.update(employee)
        await self.resolver.invalidate(employee.id)
        logger.info(f"Reactivated employee {employee.username} (id={employee.id})")
        await self.audit.record(
            AuditEventType.EMPLOYEE_REACTIVATED, "employee", employee.id, actor_id, {"username": employee.username}
        )
        return employee
