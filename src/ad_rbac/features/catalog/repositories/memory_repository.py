"""In-memory catalog repositories."""

from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from ....core.exceptions import DatabaseError, DuplicatePermission, DuplicateSlug
from ....database.memory import InMemoryDatabase
from ....utils.datetime import utc_now
from ..entities import Group, Permission, Role

GROUPS = "groups"
ROLES = "roles"
PERMISSIONS = "permissions"
ROLE_PERMISSIONS = "role_permissions"


class _SoftDeleteTable:
    """Shared CRUD over one soft-deletable table."""

    table: str = ""
    entity: str = ""

    def __init__(self, database: InMemoryDatabase, clock: Callable[[], datetime] = utc_now):
        self._db = database
        self._clock = clock

    def _live(self) -> list:
        return [row for row in self._db.rows(self.table) if row.deleted_at is None]

    async def get_by_id(self, entity_id: int):
        row = self._db.get(self.table, entity_id)
        return row if row is not None and row.deleted_at is None else None

    async def get_many(self, ids: Iterable[int]) -> list:
        wanted = set(ids)
        return [row for row in self._live() if row.id in wanted]

    async def soft_delete(self, entity_id: int) -> bool:
        row = self._db.get(self.table, entity_id)
        if row is None or row.deleted_at is not None:
            return False
        now = self._clock()
        row.deleted_at = now
        row.updated_at = now
        self._db.put(self.table, entity_id, row)
        return True

    def _check_slug(self, slug: str, own_id: Optional[int]) -> None:
        for row in self._live():
            if row.slug == slug and row.id != own_id:
                raise DuplicateSlug(self.entity, slug)

    def _insert(self, entity):
        now = self._clock()
        created = replace(entity, id=self._db.next_id(self.table), created_at=now, updated_at=now)
        self._db.put(self.table, created.id, created)
        return created

    def _save(self, entity):
        if entity.id is None or not self._db.contains(self.table, entity.id):
            raise DatabaseError(f"{self.entity.capitalize()} {entity.id} does not exist")
        updated = replace(entity, updated_at=self._clock())
        self._db.put(self.table, updated.id, updated)
        return updated


class InMemoryGroupRepository(_SoftDeleteTable):
    """In-memory implementation of GroupRepository protocol."""

    table = GROUPS
    entity = "group"

    async def get_by_slug(self, slug: str) -> Optional[Group]:
        return next((g for g in self._live() if g.slug == slug), None)

    async def list_all(self) -> List[Group]:
        return sorted(self._live(), key=lambda g: (g.name, g.id))

    async def create(self, group: Group) -> Group:
        self._check_slug(group.slug, None)
        return self._insert(group)

    async def update(self, group: Group) -> Group:
        self._check_slug(group.slug, group.id)
        return self._save(group)

    async def count_children(self, group_id: int) -> int:
        return sum(1 for g in self._live() if g.parent_id == group_id)


class InMemoryRoleRepository(_SoftDeleteTable):
    """In-memory implementation of RoleRepository protocol."""

    table = ROLES
    entity = "role"

    async def get_by_slug(self, slug: str) -> Optional[Role]:
        return next((r for r in self._live() if r.slug == slug), None)

    async def list_all(self) -> List[Role]:
        return sorted(self._live(), key=lambda r: (r.name, r.id))

    async def list_by_groups(self, group_ids: Iterable[int]) -> List[Role]:
        wanted = set(group_ids)
        return [r for r in self._live() if r.group_id is not None and r.group_id in wanted]

    async def create(self, role: Role) -> Role:
        self._check_slug(role.slug, None)
        return self._insert(role)

    async def update(self, role: Role) -> Role:
        self._check_slug(role.slug, role.id)
        return self._save(role)

    async def count_by_group(self, group_id: int) -> int:
        return sum(1 for r in self._live() if r.group_id == group_id)

    def _links(self) -> List[tuple]:
        return [(row["role_id"], row["permission_id"]) for row in self._db.rows(ROLE_PERMISSIONS)]

    async def permission_ids(self, role_id: int) -> Set[int]:
        return {pid for rid, pid in self._links() if rid == role_id}

    async def attach_permissions(self, role_id: int, permission_ids: Iterable[int]) -> Set[int]:
        added = set()
        for pid in set(permission_ids):
            if not self._db.contains(ROLE_PERMISSIONS, (role_id, pid)):
                self._db.put(
                    ROLE_PERMISSIONS,
                    (role_id, pid),
                    {"role_id": role_id, "permission_id": pid, "created_at": self._clock()},
                )
                added.add(pid)
        return added

    async def detach_permissions(self, role_id: int, permission_ids: Iterable[int]) -> Set[int]:
        return {pid for pid in set(permission_ids) if self._db.remove(ROLE_PERMISSIONS, (role_id, pid))}

    async def roles_with_permission(self, permission_id: int) -> Set[int]:
        live_roles = {r.id for r in self._live()}
        return {rid for rid, pid in self._links() if pid == permission_id and rid in live_roles}

    async def permissions_by_role(self, role_ids: Iterable[int]) -> Dict[int, List[Permission]]:
        wanted = set(role_ids)
        result: Dict[int, List[Permission]] = {rid: [] for rid in wanted}
        for rid, pid in self._links():
            if rid not in wanted:
                continue
            permission = self._db.get(PERMISSIONS, pid)
            if permission is not None and permission.deleted_at is None:
                result[rid].append(permission)
        return result


class InMemoryPermissionRepository(_SoftDeleteTable):
    """In-memory implementation of PermissionRepository protocol."""

    table = PERMISSIONS
    entity = "permission"

    async def get_by_key(self, module: str, action: str) -> Optional[Permission]:
        lookup = Permission(id=None, module=module, action=action)
        return next((p for p in self._live() if p.key == lookup.key), None)

    async def list_all(self, module: Optional[str] = None) -> List[Permission]:
        rows = self._live()
        if module is not None:
            wanted = Permission(id=None, module=module, action="read").module
            rows = [p for p in rows if p.module == wanted]
        return sorted(rows, key=lambda p: (p.module, p.action))

    async def create(self, permission: Permission) -> Permission:
        if await self.get_by_key(permission.module, permission.action) is not None:
            raise DuplicatePermission(permission.module, permission.action)
        return self._insert(permission)

    async def update(self, permission: Permission) -> Permission:
        existing = await self.get_by_key(permission.module, permission.action)
        if existing is not None and existing.id != permission.id:
            raise DuplicatePermission(permission.module, permission.action)
        return self._save(permission)
