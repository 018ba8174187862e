"""Employee entities and protocols."""

from .employee import Employee, EmployeeRecord, LoginResult, UserDetails
from .protocols import Authenticator, EmployeeRepository, EmployeeSource

__all__ = [
    "Employee",
    "EmployeeRecord",
    "LoginResult",
    "UserDetails",
    "Authenticator",
    "EmployeeRepository",
    "EmployeeSource",
]
