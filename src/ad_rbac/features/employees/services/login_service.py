"""Directory login flow."""

import logging
from datetime import datetime
from typing import Callable, Optional

from ....config.constants import AuditEventType
from ....core.exceptions import AuthenticationFailed, InactiveEmployeeError
from ....utils.datetime import utc_now
from ...audit.entities import AuditSink
from ...audit.recorder import AuditRecorder
from ...permissions.services.permission_resolver import PermissionResolver
from ..entities import Authenticator, EmployeeRepository, LoginResult
from .employee_service import EmployeeService

logger = logging.getLogger(__name__)


class LoginService:
    """Authenticates against the directory and loads the caller's grants.

    Employee attributes are refreshed from the HR system on every login, and
    the employee row is created on first login.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        employee_service: EmployeeService,
        employee_repository: EmployeeRepository,
        resolver: PermissionResolver,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.authenticator = authenticator
        self.employee_service = employee_service
        self.employees = employee_repository
        self.resolver = resolver
        self.audit = AuditRecorder(audit_sink)
        self.clock = clock

    async def login(self, username: str, password: str) -> LoginResult:
        username = (username or "").strip()
        if not username or not password:
            raise AuthenticationFailed(username)
        if not await self.authenticator.authenticate(username, password):
            logger.warning(f"Directory rejected credentials for {username}")
            raise AuthenticationFailed(username)

        employee = await self.employee_service.sync_from_source(username)
        if not employee.is_active:
            raise InactiveEmployeeError(employee.id)

        employee.last_login_at = self.clock()
        employee = await self.employees.update(employee)

        permissions = await self.resolver.effective_permissions(employee)
        roles = await self.resolver.active_role_slugs(employee)
        groups = await self.resolver.active_group_slugs(employee)

        logger.info(f"Employee {employee.username} (id={employee.id}) logged in")
        await self.audit.record(
            AuditEventType.EMPLOYEE_LOGGED_IN, "employee", employee.id, employee.id, {"username": employee.username}
        )
        return LoginResult(employee=employee, permissions=permissions, roles=roles, groups=groups)
