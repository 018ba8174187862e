"""Catalog service for groups, roles and permissions.

Structural rules live here: group parents never form a cycle, deletion
never cascades, and system entities are only changed when the caller
passes ``allow_system=True``. Any change that can alter what an employee
is granted fans out a cache invalidation to every current holder after
the transaction commits.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from ....config.constants import AssignableType, AuditEventType
from ....core.exceptions import (
    CircularReferenceError,
    GroupNotFound,
    HasDependents,
    PermissionNotFound,
    ProtectedEntityError,
    RoleNotFound,
)
from ....core.value_objects import AssignableRef
from ....database.protocols import TransactionManager
from ....utils.datetime import utc_now
from ....utils.locks import advisory_lock_key
from ....utils.slugs import slugify
from ...assignments.entities import AssignmentRepository
from ...audit.entities import AuditSink
from ...audit.recorder import AuditRecorder
from ...permissions.services.permission_resolver import PermissionResolver
from ..entities import (
    Group,
    GroupNode,
    GroupRepository,
    Permission,
    PermissionRepository,
    Role,
    RoleRepository,
)

logger = logging.getLogger(__name__)

# Held by every write to group parents or role ownership; role_lock guards
# a role's own row and its permission links.
GROUP_TREE_LOCK = advisory_lock_key("catalog", "group_tree")

_UNSET = object()


def role_lock(role_id: int) -> int:
    return advisory_lock_key("catalog", "role", role_id)


def role_membership_locks(role_ids: Iterable[int]) -> List[int]:
    """Locks for changing which group owns each of ``role_ids``."""
    return [GROUP_TREE_LOCK, *(role_lock(r) for r in set(role_ids))]


class CatalogService:
    """CRUD and structural invariants for the RBAC catalog."""

    def __init__(
        self,
        database: TransactionManager,
        group_repository: GroupRepository,
        role_repository: RoleRepository,
        permission_repository: PermissionRepository,
        assignment_repository: AssignmentRepository,
        resolver: PermissionResolver,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.groups = group_repository
        self.roles = role_repository
        self.permissions = permission_repository
        self.assignments = assignment_repository
        self.resolver = resolver
        self.audit = AuditRecorder(audit_sink)
        self.clock = clock

    # Groups

    async def get_group(self, group_id: int) -> Group:
        group = await self.groups.get_by_id(group_id)
        if group is None:
            raise GroupNotFound(group_id)
        return group

    async def create_group(
        self,
        name: str,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
        is_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Group:
        async with self.database.transaction(GROUP_TREE_LOCK):
            if parent_id is not None:
                await self.get_group(parent_id)
            group = await self.groups.create(
                Group(
                    id=None,
                    name=name,
                    slug=slug or slugify(name),
                    description=description,
                    parent_id=parent_id,
                    is_system=is_system,
                )
            )
        logger.info(f"Created group {group.slug} (id={group.id})")
        await self.audit.record(AuditEventType.GROUP_CREATED, "group", group.id, actor_id, {"slug": group.slug})
        return group

    async def update_group(
        self,
        group_id: int,
        name: Optional[str] = None,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        parent_id=_UNSET,
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Group:
        """Update a group; pass ``parent_id=None`` to make it a root.

        Raises CircularReferenceError if the new parent is the group itself
        or one of its descendants. Nothing is written in that case.
        """
        async with self.database.transaction(GROUP_TREE_LOCK):
            group = await self.get_group(group_id)
            self._check_protected("group", group.id, group.is_system, allow_system)

            if parent_id is not _UNSET and parent_id != group.parent_id:
                if parent_id is not None:
                    await self._check_no_cycle(group.id, parent_id)
                group.parent_id = parent_id
            if name is not None:
                group.name = name
            if slug is not None:
                group.slug = slug
            if description is not None:
                group.description = description
            group = await self.groups.update(group)

        logger.info(f"Updated group {group.slug} (id={group.id})")
        await self.audit.record(
            AuditEventType.GROUP_UPDATED, "group", group.id, actor_id,
            {"slug": group.slug, "parent_id": group.parent_id},
        )
        return group

    async def delete_group(
        self, group_id: int, allow_system: bool = False, actor_id: Optional[int] = None
    ) -> None:
        """Soft-delete a group that has no child groups and no roles."""
        async with self.database.transaction(GROUP_TREE_LOCK):
            group = await self.get_group(group_id)
            self._check_protected("group", group.id, group.is_system, allow_system)

            children = await self.groups.count_children(group_id)
            if children:
                raise HasDependents("group", group_id, "child groups", children)
            roles = await self.roles.count_by_group(group_id)
            if roles:
                raise HasDependents("group", group_id, "roles", roles)
            await self.groups.soft_delete(group_id)

        logger.info(f"Deleted group {group.slug} (id={group_id})")
        await self.audit.record(AuditEventType.GROUP_DELETED, "group", group_id, actor_id, {"slug": group.slug})

    async def get_group_tree(self) -> List[GroupNode]:
        """Root groups with their descendants nested, siblings ordered by name."""
        groups = await self.groups.list_all()
        nodes: Dict[int, GroupNode] = {g.id: GroupNode(group=g) for g in groups}
        roots: List[GroupNode] = []
        for group in groups:
            node = nodes[group.id]
            parent = nodes.get(group.parent_id) if group.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    async def _check_no_cycle(self, group_id: int, parent_id: int) -> None:
        """Walk up from the proposed parent; reaching ``group_id`` means a cycle."""
        seen: Set[int] = set()
        current: Optional[int] = parent_id
        while current is not None:
            if current == group_id:
                raise CircularReferenceError(group_id, parent_id)
            if current in seen:
                raise CircularReferenceError(group_id, parent_id)
            seen.add(current)
            ancestor = await self.groups.get_by_id(current)
            if ancestor is None:
                if current == parent_id:
                    raise GroupNotFound(parent_id)
                break
            current = ancestor.parent_id

    # Roles

    async def get_role(self, role_id: int) -> Role:
        role = await self.roles.get_by_id(role_id)
        if role is None:
            raise RoleNotFound(role_id)
        return role

    async def create_role(
        self,
        name: str,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        group_id: Optional[int] = None,
        is_system: bool = False,
        permission_ids: Iterable[int] = (),
        actor_id: Optional[int] = None,
    ) -> Role:
        """Create a role, optionally owned by a group and seeded with permissions.

        A new role has no holders, so nothing needs invalidating.
        """
        permission_ids = list(permission_ids)
        locks = [GROUP_TREE_LOCK] if group_id is not None else []
        async with self.database.transaction(*locks):
            if group_id is not None:
                await self.get_group(group_id)
            await self._require_permissions(permission_ids)
            role = await self.roles.create(
                Role(
                    id=None,
                    name=name,
                    slug=slug or slugify(name),
                    description=description,
                    group_id=group_id,
                    is_system=is_system,
                )
            )
            if permission_ids:
                await self.roles.attach_permissions(role.id, permission_ids)

        # Holders of the owning group gain this role's permissions.
        if group_id is not None and permission_ids:
            await self._invalidate_group_holders([group_id])

        logger.info(f"Created role {role.slug} (id={role.id})")
        await self.audit.record(
            AuditEventType.ROLE_CREATED, "role", role.id, actor_id,
            {"slug": role.slug, "group_id": group_id, "permission_ids": sorted(permission_ids)},
        )
        return role

    async def update_role(
        self,
        role_id: int,
        name: Optional[str] = None,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Role:
        async with self.database.transaction(role_lock(role_id)):
            role = await self.get_role(role_id)
            self._check_protected("role", role.id, role.is_system, allow_system)
            slug_changed = slug is not None and slug != role.slug
            if name is not None:
                role.name = name
            if slug is not None:
                role.slug = slug
            if description is not None:
                role.description = description
            role = await self.roles.update(role)

        logger.info(f"Updated role {role.slug} (id={role.id})")
        await self.audit.record(
            AuditEventType.ROLE_UPDATED, "role", role.id, actor_id,
            {"slug": role.slug, "slug_changed": slug_changed},
        )
        return role

    async def delete_role(
        self, role_id: int, allow_system: bool = False, actor_id: Optional[int] = None
    ) -> None:
        """Soft-delete a role that no employee currently holds."""
        async with self.database.transaction(role_lock(role_id)):
            role = await self.get_role(role_id)
            self._check_protected("role", role.id, role.is_system, allow_system)
            holders = await self.assignments.holders(AssignableRef.role(role_id), self.clock())
            if holders:
                raise HasDependents("role", role_id, "employees", len(holders))
            await self.roles.soft_delete(role_id)

        # Employees reaching the role through its group lose its permissions.
        if role.group_id is not None:
            await self._invalidate_group_holders([role.group_id])

        logger.info(f"Deleted role {role.slug} (id={role_id})")
        await self.audit.record(AuditEventType.ROLE_DELETED, "role", role_id, actor_id, {"slug": role.slug})

    async def set_role_group(
        self,
        role_id: int,
        group_id: Optional[int],
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Role:
        """Move a role into a group, or out of any group with ``None``."""
        async with self.database.transaction(*role_membership_locks([role_id])):
            role = await self.get_role(role_id)
            self._check_protected("role", role.id, role.is_system, allow_system)
            previous = role.group_id
            if previous == group_id:
                return role
            if group_id is not None:
                await self.get_group(group_id)
            role.group_id = group_id
            role = await self.roles.update(role)

        await self._invalidate_group_holders([g for g in (previous, group_id) if g is not None])
        logger.info(f"Moved role {role.slug} from group {previous} to group {group_id}")
        await self.audit.record(
            AuditEventType.ROLE_UPDATED, "role", role.id, actor_id,
            {"group_id": {"old": previous, "new": group_id}},
        )
        return role

    async def sync_group_roles(
        self, group_id: int, role_ids: Iterable[int], actor_id: Optional[int] = None
    ) -> List[Role]:
        """Make ``role_ids`` exactly the roles owned by the group.

        Every role whose owner changes is locked along with the group tree.
        The current members are only known after reading, so the locks are
        taken for the members seen beforehand and the sync retries if the
        membership moved in between.
        """
        wanted = set(role_ids)
        affected_groups = {group_id}
        seen = {r.id for r in await self.roles.list_by_groups([group_id])}
        while True:
            locked = wanted | seen
            async with self.database.transaction(*role_membership_locks(locked)):
                await self.get_group(group_id)
                members = await self.roles.list_by_groups([group_id])
                seen = {r.id for r in members}
                if not seen <= locked:
                    logger.debug(f"Group {group_id} membership changed while locking; retrying")
                    continue
                incoming = await self.roles.get_many(wanted)
                missing = wanted - {r.id for r in incoming}
                if missing:
                    raise RoleNotFound(sorted(missing)[0])

                for role in members:
                    if role.id not in wanted:
                        role.group_id = None
                        await self.roles.update(role)
                for role in incoming:
                    if role.group_id != group_id:
                        if role.group_id is not None:
                            affected_groups.add(role.group_id)
                        role.group_id = group_id
                        await self.roles.update(role)
                result = await self.roles.list_by_groups([group_id])
            break

        await self._invalidate_group_holders(affected_groups)
        logger.info(f"Synced group {group_id} roles to {sorted(wanted)}")
        await self.audit.record(
            AuditEventType.GROUP_UPDATED, "group", group_id, actor_id, {"role_ids": sorted(wanted)}
        )
        return result

    # Role permissions

    async def attach_permissions(
        self,
        role_id: int,
        permission_ids: Iterable[int],
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Set[int]:
        """Link permissions to a role; returns the ids that were newly linked."""
        ids = list(permission_ids)
        async with self.database.transaction(role_lock(role_id)):
            role = await self.get_role(role_id)
            self._check_protected("role", role.id, role.is_system, allow_system)
            await self._require_permissions(ids)
            added = await self.roles.attach_permissions(role_id, ids)

        if added:
            await self._invalidate_role_holders(role)
            logger.info(f"Attached permissions {sorted(added)} to role {role.slug}")
            await self.audit.record(
                AuditEventType.ROLE_PERMISSIONS_CHANGED, "role", role_id, actor_id, {"attached": sorted(added)}
            )
        return added

    async def detach_permissions(
        self,
        role_id: int,
        permission_ids: Iterable[int],
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Set[int]:
        """Unlink permissions from a role; returns the ids that were linked."""
        ids = list(permission_ids)
        async with self.database.transaction(role_lock(role_id)):
            role = await self.get_role(role_id)
            self._check_protected("role", role.id, role.is_system, allow_system)
            removed = await self.roles.detach_permissions(role_id, ids)

        if removed:
            await self._invalidate_role_holders(role)
            logger.info(f"Detached permissions {sorted(removed)} from role {role.slug}")
            await self.audit.record(
                AuditEventType.ROLE_PERMISSIONS_CHANGED, "role", role_id, actor_id, {"detached": sorted(removed)}
            )
        return removed

    async def sync_role_permissions(
        self,
        role_id: int,
        permission_ids: Iterable[int],
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Dict[str, List[int]]:
        """Make ``permission_ids`` exactly the role's permissions."""
        wanted = set(permission_ids)
        async with self.database.transaction(role_lock(role_id)):
            role = await self.get_role(role_id)
            self._check_protected("role", role.id, role.is_system, allow_system)
            await self._require_permissions(wanted)
            current = await self.roles.permission_ids(role_id)
            removed = await self.roles.detach_permissions(role_id, current - wanted)
            added = await self.roles.attach_permissions(role_id, wanted - current)

        changes = {"attached": sorted(added), "detached": sorted(removed)}
        if added or removed:
            await self._invalidate_role_holders(role)
            logger.info(f"Synced role {role.slug} permissions: {changes}")
            await self.audit.record(AuditEventType.ROLE_PERMISSIONS_CHANGED, "role", role_id, actor_id, changes)
        return changes

    # Permissions

    async def get_permission(self, permission_id: int) -> Permission:
        permission = await self.permissions.get_by_id(permission_id)
        if permission is None:
            raise PermissionNotFound(permission_id)
        return permission

    async def create_permission(
        self,
        module: str,
        action: str,
        name: str = "",
        description: Optional[str] = None,
        category: Optional[str] = None,
        is_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Permission:
        """Create a permission; DuplicatePermission if ``(module, action)`` exists."""
        permission = await self.permissions.create(
            Permission(
                id=None,
                module=module,
                action=action,
                name=name,
                description=description,
                category=category,
                is_system=is_system,
            )
        )
        logger.info(f"Created permission {permission.slug} (id={permission.id})")
        await self.audit.record(
            AuditEventType.PERMISSION_CREATED, "permission", permission.id, actor_id, {"slug": permission.slug}
        )
        return permission

    async def update_permission(
        self,
        permission_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        allow_system: bool = False,
        actor_id: Optional[int] = None,
    ) -> Permission:
        """Update descriptive fields. The ``(module, action)`` identity is fixed."""
        permission = await self.get_permission(permission_id)
        self._check_protected("permission", permission.id, permission.is_system, allow_system)
        if name is not None:
            permission.name = name
        if description is not None:
            permission.description = description
        if category is not None:
            permission.category = category
        permission = await self.permissions.update(permission)
        logger.info(f"Updated permission {permission.slug} (id={permission.id})")
        await self.audit.record(
            AuditEventType.PERMISSION_UPDATED, "permission", permission.id, actor_id, {"slug": permission.slug}
        )
        return permission

    async def delete_permission(
        self, permission_id: int, allow_system: bool = False, actor_id: Optional[int] = None
    ) -> None:
        """Soft-delete a permission no role links to and no employee holds directly."""
        async with self.database.transaction(advisory_lock_key("catalog", "permission", permission_id)):
            permission = await self.get_permission(permission_id)
            self._check_protected("permission", permission.id, permission.is_system, allow_system)
            await self._check_permission_unused(permission)
            await self.permissions.soft_delete(permission_id)

        logger.info(f"Deleted permission {permission.slug} (id={permission_id})")
        await self.audit.record(
            AuditEventType.PERMISSION_DELETED, "permission", permission_id, actor_id, {"slug": permission.slug}
        )

    async def _check_permission_unused(self, permission: Permission) -> None:
        roles = await self.roles.roles_with_permission(permission.id)
        if roles:
            raise HasDependents("permission", permission.id, "roles", len(roles))
        holders = await self.assignments.holders(AssignableRef.permission(permission.id), self.clock())
        if holders:
            raise HasDependents("permission", permission.id, "employees", len(holders))

    # Internals

    def _check_protected(self, entity: str, entity_id: int, is_system: bool, allow_system: bool) -> None:
        if is_system and not allow_system:
            raise ProtectedEntityError(entity, entity_id)

    async def _require_permissions(self, permission_ids: Iterable[int]) -> None:
        ids = set(permission_ids)
        if not ids:
            return
        found = {p.id for p in await self.permissions.get_many(ids)}
        missing = sorted(ids - found)
        if missing:
            raise PermissionNotFound(missing[0])

    async def _invalidate_role_holders(self, role: Role) -> None:
        """Invalidate direct holders and holders of the owning group.

        The owner is re-read after commit; a move that committed meanwhile
        means both the old and the new group's holders are affected.
        """
        now = self.clock()
        affected = await self.assignments.holders(AssignableRef.role(role.id), now)
        group_ids = {role.group_id}
        current = await self.roles.get_by_id(role.id)
        if current is not None:
            group_ids.add(current.group_id)
        group_ids.discard(None)
        affected |= await self.assignments.holders_of_any(AssignableType.GROUP, group_ids, now)
        await self.resolver.invalidate_many(affected)
        logger.debug(f"Role {role.slug} change invalidated {len(affected)} employees")

    async def _invalidate_group_holders(self, group_ids: Iterable[int]) -> None:
        affected = await self.assignments.holders_of_any(AssignableType.GROUP, group_ids, self.clock())
        await self.resolver.invalidate_many(affected)
        logger.debug(f"Group change invalidated {len(affected)} employees")
