"""Employee services."""

from .employee_service import EmployeeService
from .login_service import LoginService

__all__ = ["EmployeeService", "LoginService"]
