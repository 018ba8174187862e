"""Exception hierarchy for ad-rbac."""

from .base import AdRbacError, create_error_response
from .domain import (
    AssignmentNotFound,
    AuthenticationFailed,
    CircularReferenceError,
    DuplicateActiveAssignment,
    DuplicatePermission,
    DuplicateSlug,
    EmployeeNotFound,
    GroupNotFound,
    HasDependents,
    InactiveEmployeeError,
    InvalidAssignableType,
    InvalidExpiryError,
    NotFound,
    PermissionNotFound,
    ProtectedEntityError,
    RoleNotFound,
)
from .infrastructure import (
    CacheError,
    CacheInvalidationError,
    ConfigurationError,
    DatabaseError,
    EmployeeSourceError,
)

__all__ = [
    "AdRbacError",
    "create_error_response",
    "AssignmentNotFound",
    "AuthenticationFailed",
    "CircularReferenceError",
    "DuplicateActiveAssignment",
    "DuplicatePermission",
    "DuplicateSlug",
    "EmployeeNotFound",
    "GroupNotFound",
    "HasDependents",
    "InactiveEmployeeError",
    "InvalidAssignableType",
    "InvalidExpiryError",
    "NotFound",
    "PermissionNotFound",
    "ProtectedEntityError",
    "RoleNotFound",
    "CacheError",
    "CacheInvalidationError",
    "ConfigurationError",
    "DatabaseError",
    "EmployeeSourceError",
]
