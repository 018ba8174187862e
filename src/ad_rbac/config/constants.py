"""Constants and enums for ad-rbac.

Values shared by the catalog, assignment and cache layers. Enum values
correspond to the strings persisted in the ``assignments`` and
``assignment_history`` tables.
"""

from enum import Enum
from typing import Final, Tuple


class CacheKeys:
    """Cache key patterns for Redis."""

    EMPLOYEE_PERMISSIONS: Final[str] = "employee:{employee_id}:permissions"
    EMPLOYEE_PERMISSIONS_PATTERN: Final[str] = "employee:*:permissions"
    EMPLOYEE_PERMISSIONS_VERSION: Final[str] = "employee:{employee_id}:permissions:version"


class CacheTTL:
    """Cache TTL values in seconds."""

    PERMISSIONS_SHORT: Final[int] = 300      # 5 minutes
    PERMISSIONS_LONG: Final[int] = 3600      # 1 hour
    PERMISSIONS_VERSION: Final[int] = 604800  # 7 days


class DefaultActions:
    """Action vocabulary used when deriving permissions for a module."""

    CRUD: Final[Tuple[str, ...]] = ("create", "read", "update", "delete")
    SPECIAL: Final[Tuple[str, ...]] = ("approve", "assign", "review", "audit", "process", "verify")


class AssignableType(str, Enum):
    """Kinds of entity that can be granted to an employee."""

    GROUP = "group"
    ROLE = "role"
    PERMISSION = "permission"

    @property
    def label(self) -> str:
        """Human readable label."""
        return self.value.capitalize()


class HistoryAction(str, Enum):
    """Assignment lifecycle transitions recorded in history."""

    CREATED = "created"
    DEACTIVATED = "deactivated"
    EXTENDED = "extended"


class AuditEventType(str, Enum):
    """Events emitted to the audit sink."""

    ASSIGNMENT_CREATED = "assignment.created"
    ASSIGNMENT_DEACTIVATED = "assignment.deactivated"
    ASSIGNMENT_EXTENDED = "assignment.extended"
    GROUP_CREATED = "group.created"
    GROUP_UPDATED = "group.updated"
    GROUP_DELETED = "group.deleted"
    ROLE_CREATED = "role.created"
    ROLE_UPDATED = "role.updated"
    ROLE_DELETED = "role.deleted"
    ROLE_PERMISSIONS_CHANGED = "role.permissions_changed"
    PERMISSION_CREATED = "permission.created"
    PERMISSION_UPDATED = "permission.updated"
    PERMISSION_DELETED = "permission.deleted"
    EMPLOYEE_SYNCED = "employee.synced"
    EMPLOYEE_DEACTIVATED = "employee.deactivated"
    EMPLOYEE_REACTIVATED = "employee.reactivated"
    EMPLOYEE_LOGGED_IN = "employee.logged_in"
