"""Typed reference to a grantable entity.

Storage keeps the ``(assignable_type, assignable_id)`` pair; everything above
the repositories works with ``AssignableRef``.
"""

from dataclasses import dataclass
from typing import Any, Union

from ...config.constants import AssignableType
from ...utils.locks import advisory_lock_key
from ..exceptions import GroupNotFound, InvalidAssignableType, PermissionNotFound, RoleNotFound

_NOT_FOUND = {
    AssignableType.GROUP: GroupNotFound,
    AssignableType.ROLE: RoleNotFound,
    AssignableType.PERMISSION: PermissionNotFound,
}


def parse_assignable_type(value: Union[str, AssignableType]) -> AssignableType:
    """Parse a type tag, raising InvalidAssignableType for unknown kinds."""
    if isinstance(value, AssignableType):
        return value
    try:
        return AssignableType(str(value).lower())
    except ValueError:
        raise InvalidAssignableType(value) from None


@dataclass(frozen=True)
class AssignableRef:
    """A group, role or permission identified by its tag and id."""

    type: AssignableType
    id: int

    def __post_init__(self):
        if not isinstance(self.type, AssignableType):
            object.__setattr__(self, "type", parse_assignable_type(self.type))
        # No stored row can carry a non-positive or non-integer id.
        if not isinstance(self.id, int) or isinstance(self.id, bool) or self.id <= 0:
            raise _NOT_FOUND[self.type](self.id)

    @classmethod
    def group(cls, group_id: int) -> "AssignableRef":
        return cls(AssignableType.GROUP, group_id)

    @classmethod
    def role(cls, role_id: int) -> "AssignableRef":
        return cls(AssignableType.ROLE, role_id)

    @classmethod
    def permission(cls, permission_id: int) -> "AssignableRef":
        return cls(AssignableType.PERMISSION, permission_id)

    @classmethod
    def of(cls, entity: Any) -> "AssignableRef":
        """Resolve the tag from an entity instance.

        Accepts an existing ref, a Group, a Role or a Permission. Anything
        else raises InvalidAssignableType.
        """
        if isinstance(entity, AssignableRef):
            return entity

        from ...features.catalog.entities import Group, Permission, Role

        if isinstance(entity, Group):
            return cls.group(entity.id)
        if isinstance(entity, Role):
            return cls.role(entity.id)
        if isinstance(entity, Permission):
            return cls.permission(entity.id)
        raise InvalidAssignableType(entity)

    def lock_key(self, employee_id: int) -> int:
        """Signed 64-bit key for ``pg_advisory_xact_lock``."""
        return advisory_lock_key("assignment", employee_id, self.type.value, self.id)

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"
