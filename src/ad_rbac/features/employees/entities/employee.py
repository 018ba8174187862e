"""Employee domain entity.

Employees are mirrored from the HR API and identified in the directory by
``username``. They are deactivated rather than deleted so assignment history
keeps pointing at a real row.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class Employee:
    """An employee known to the RBAC engine."""

    id: Optional[int]
    username: str
    employee_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate employee entity."""
        if not self.username or not self.username.strip():
            raise ValueError("Employee username cannot be empty")
        self.username = self.username.strip()

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.username

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def apply_record(self, record: "EmployeeRecord") -> None:
        """Copy HR attributes onto this employee."""
        self.employee_id = record.employee_id or self.employee_id
        self.email = record.email or self.email
        self.first_name = record.first_name or self.first_name
        self.last_name = record.last_name or self.last_name
        self.department = record.department
        self.position = record.position


@dataclass(frozen=True)
class EmployeeRecord:
    """Employee attributes as reported by the HR API."""

    username: str
    employee_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, username: str, payload: Dict[str, Any]) -> "EmployeeRecord":
        """Build a record from an HR API payload.

        Accepts a ``{"data": {...}}`` envelope or a bare object and the
        common field spellings used by HR systems.
        """
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        if not isinstance(data, dict):
            data = {}

        def pick(*keys: str) -> Optional[str]:
            for key in keys:
                value = data.get(key)
                if value not in (None, ""):
                    return str(value)
            return None

        return cls(
            username=pick("username", "ad_username", "samaccountname") or username,
            employee_id=pick("employee_id", "employeeId", "id"),
            email=pick("email", "mail"),
            first_name=pick("first_name", "firstName", "given_name"),
            last_name=pick("last_name", "lastName", "surname"),
            department=pick("department"),
            position=pick("position", "title", "job_title"),
            raw=dict(data),
        )


@dataclass(frozen=True)
class UserDetails:
    """Directory attributes returned by the authenticator."""

    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class LoginResult:
    """Outcome of a successful login."""

    employee: Employee
    permissions: frozenset
    roles: frozenset
    groups: frozenset = frozenset()
