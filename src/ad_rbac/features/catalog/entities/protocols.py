"""Protocol interfaces for catalog persistence."""

from abc import abstractmethod
from typing import Dict, Iterable, List, Optional, Protocol, Set, runtime_checkable

from .group import Group
from .permission import Permission
from .role import Role


@runtime_checkable
class GroupRepository(Protocol):
    """Protocol for group data access. Reads skip soft-deleted rows."""

    @abstractmethod
    async def get_by_id(self, group_id: int) -> Optional[Group]:
        ...

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[Group]:
        ...

    @abstractmethod
    async def get_many(self, group_ids: Iterable[int]) -> List[Group]:
        ...

    @abstractmethod
    async def list_all(self) -> List[Group]:
        ...

    @abstractmethod
    async def create(self, group: Group) -> Group:
        ...

    @abstractmethod
    async def update(self, group: Group) -> Group:
        ...

    @abstractmethod
    async def soft_delete(self, group_id: int) -> bool:
        ...

    @abstractmethod
    async def count_children(self, group_id: int) -> int:
        """Count non-deleted child groups."""
        ...


@runtime_checkable
class RoleRepository(Protocol):
    """Protocol for role data access, including role-permission links."""

    @abstractmethod
    async def get_by_id(self, role_id: int) -> Optional[Role]:
        ...

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[Role]:
        ...

    @abstractmethod
    async def get_many(self, role_ids: Iterable[int]) -> List[Role]:
        ...

    @abstractmethod
    async def list_all(self) -> List[Role]:
        ...

    @abstractmethod
    async def list_by_groups(self, group_ids: Iterable[int]) -> List[Role]:
        """Non-deleted roles owned by any of the groups."""
        ...

    @abstractmethod
    async def create(self, role: Role) -> Role:
        ...

    @abstractmethod
    async def update(self, role: Role) -> Role:
        ...

    @abstractmethod
    async def soft_delete(self, role_id: int) -> bool:
        ...

    @abstractmethod
    async def count_by_group(self, group_id: int) -> int:
        ...

    @abstractmethod
    async def permission_ids(self, role_id: int) -> Set[int]:
        """Ids linked to the role, including soft-deleted permissions."""
        ...

    @abstractmethod
    async def attach_permissions(self, role_id: int, permission_ids: Iterable[int]) -> Set[int]:
        """Link permissions; return the ids that were newly linked."""
        ...

    @abstractmethod
    async def detach_permissions(self, role_id: int, permission_ids: Iterable[int]) -> Set[int]:
        """Unlink permissions; return the ids that were linked before."""
        ...

    @abstractmethod
    async def roles_with_permission(self, permission_id: int) -> Set[int]:
        """Non-deleted role ids linked to a permission."""
        ...

    @abstractmethod
    async def permissions_by_role(self, role_ids: Iterable[int]) -> Dict[int, List[Permission]]:
        """Non-deleted permissions for each role id."""
        ...


@runtime_checkable
class PermissionRepository(Protocol):
    """Protocol for permission data access."""

    @abstractmethod
    async def get_by_id(self, permission_id: int) -> Optional[Permission]:
        ...

    @abstractmethod
    async def get_by_key(self, module: str, action: str) -> Optional[Permission]:
        ...

    @abstractmethod
    async def get_many(self, permission_ids: Iterable[int]) -> List[Permission]:
        ...

    @abstractmethod
    async def list_all(self, module: Optional[str] = None) -> List[Permission]:
        ...

    @abstractmethod
    async def create(self, permission: Permission) -> Permission:
        """Insert a permission; DuplicatePermission on a taken (module, action)."""
        ...

    @abstractmethod
    async def update(self, permission: Permission) -> Permission:
        ...

    @abstractmethod
    async def soft_delete(self, permission_id: int) -> bool:
        ...
