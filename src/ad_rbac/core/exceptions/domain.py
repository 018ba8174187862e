"""Domain exceptions raised by the catalog, assignment and login flows."""

from typing import Any, Optional

from .base import AdRbacError


class DuplicateActiveAssignment(AdRbacError):
    """Raised when an active grant already exists for the employee/entity pair."""

    def __init__(self, employee_id: int, assignable_type: str, assignable_id: int):
        self.employee_id = employee_id
        self.assignable_type = assignable_type
        self.assignable_id = assignable_id
        super().__init__(
            f"Employee {employee_id} already holds {assignable_type} {assignable_id}",
            details={
                "employee_id": employee_id,
                "assignable_type": assignable_type,
                "assignable_id": assignable_id,
            },
        )


class InvalidAssignableType(AdRbacError):
    """Raised when something other than a group, role or permission is assigned."""

    def __init__(self, value: Any):
        kind = value if isinstance(value, str) else type(value).__name__
        super().__init__(
            f"'{kind}' is not an assignable type; expected group, role or permission",
            details={"kind": kind},
        )


class CircularReferenceError(AdRbacError):
    """Raised when a group parent change would create a cycle."""

    def __init__(self, group_id: int, parent_id: int):
        super().__init__(
            f"Setting parent of group {group_id} to {parent_id} would create a cycle",
            details={"group_id": group_id, "parent_id": parent_id},
        )


class HasDependents(AdRbacError):
    """Raised when deletion is blocked by existing dependents."""

    def __init__(self, entity: str, entity_id: int, dependents: str, count: int):
        self.entity = entity
        self.entity_id = entity_id
        self.dependents = dependents
        self.count = count
        super().__init__(
            f"Cannot delete {entity} {entity_id}: {count} {dependents} depend on it",
            details={
                "entity": entity,
                "entity_id": entity_id,
                "dependents": dependents,
                "count": count,
            },
        )


class DuplicatePermission(AdRbacError):
    """Raised when a (module, action) pair already exists."""

    def __init__(self, module: str, action: str):
        super().__init__(
            f"Permission '{module}.{action}' already exists",
            details={"module": module, "action": action},
        )


class DuplicateSlug(AdRbacError):
    """Raised when a group or role slug is already taken."""

    def __init__(self, entity: str, slug: str):
        super().__init__(
            f"{entity.capitalize()} slug '{slug}' already exists",
            details={"entity": entity, "slug": slug},
        )


class NotFound(AdRbacError):
    """Raised when a referenced entity does not exist."""

    entity = "entity"

    def __init__(self, identifier: Any, message: Optional[str] = None):
        self.identifier = identifier
        super().__init__(
            message or f"{self.entity.capitalize()} '{identifier}' not found",
            details={"entity": self.entity, "identifier": identifier},
        )


class EmployeeNotFound(NotFound):
    entity = "employee"


class GroupNotFound(NotFound):
    entity = "group"


class RoleNotFound(NotFound):
    entity = "role"


class PermissionNotFound(NotFound):
    entity = "permission"


class AssignmentNotFound(NotFound):
    entity = "assignment"


class ProtectedEntityError(AdRbacError):
    """Raised when a system entity is changed through a normal path."""

    def __init__(self, entity: str, entity_id: int):
        super().__init__(
            f"{entity.capitalize()} {entity_id} is a system {entity} and cannot be modified",
            details={"entity": entity, "entity_id": entity_id},
        )


class InactiveEmployeeError(AdRbacError):
    """Raised when an operation requires an active employee."""

    def __init__(self, employee_id: int):
        super().__init__(
            f"Employee {employee_id} is inactive",
            details={"employee_id": employee_id},
        )


class InvalidExpiryError(AdRbacError):
    """Raised when an expiry is not in the future."""


class AuthenticationFailed(AdRbacError):
    """Raised when the directory rejects the credentials."""

    def __init__(self, username: str):
        super().__init__(
            f"Authentication failed for '{username}'",
            details={"username": username},
        )
