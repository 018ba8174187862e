"""ad-rbac - Active Directory backed role/group/permission engine.

Resolves effective permissions through direct grants, roles and
groups-of-roles, manages time-bounded assignments with history, and keeps a
per-employee permission cache coherent with committed writes.
"""

from .__version__ import __version__

from .config import (
    AdRbacSettings,
    AssignableType,
    AuditEventType,
    HistoryAction,
    get_settings,
    setup_logging,
)

from .core.exceptions import (
    AdRbacError,
    AuthenticationFailed,
    CacheError,
    CircularReferenceError,
    ConfigurationError,
    DatabaseError,
    DuplicateActiveAssignment,
    DuplicatePermission,
    HasDependents,
    InactiveEmployeeError,
    InvalidAssignableType,
    NotFound,
    ProtectedEntityError,
)

from .core.value_objects import AssignableRef

from .features.assignments.entities import (
    Assignment,
    AssignmentHistory,
    AssignmentStatistics,
    BatchResult,
    BulkAssignOutcome,
    SyncResult,
)
from .features.assignments.services import AssignmentService, StatisticsService
from .features.catalog.entities import Group, GroupNode, Permission, Role, ScanResult
from .features.catalog.services import CatalogService, PermissionScanner
from .features.employees.entities import Employee, EmployeeRecord, LoginResult
from .features.employees.services import EmployeeService, LoginService
from .features.permissions.entities import PermissionBreakdown
from .features.permissions.services import PermissionResolver

from .container import RbacContainer

__all__ = [
    "__version__",
    # Configuration
    "AdRbacSettings",
    "AssignableType",
    "AuditEventType",
    "HistoryAction",
    "get_settings",
    "setup_logging",
    # Exceptions
    "AdRbacError",
    "AuthenticationFailed",
    "CacheError",
    "CircularReferenceError",
    "ConfigurationError",
    "DatabaseError",
    "DuplicateActiveAssignment",
    "DuplicatePermission",
    "HasDependents",
    "InactiveEmployeeError",
    "InvalidAssignableType",
    "NotFound",
    "ProtectedEntityError",
    # Entities
    "AssignableRef",
    "Assignment",
    "AssignmentHistory",
    "AssignmentStatistics",
    "BatchResult",
    "BulkAssignOutcome",
    "SyncResult",
    "Employee",
    "EmployeeRecord",
    "LoginResult",
    "Group",
    "GroupNode",
    "Permission",
    "PermissionBreakdown",
    "Role",
    "ScanResult",
    # Services
    "AssignmentService",
    "CatalogService",
    "EmployeeService",
    "LoginService",
    "PermissionResolver",
    "PermissionScanner",
    "StatisticsService",
    "RbacContainer",
]
