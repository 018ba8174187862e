"""Permission resolver.

Answers "does employee E hold permission P" by walking three sources in
order: permissions assigned directly, permissions of directly assigned
roles, and permissions of roles owned by directly assigned groups. Group
nesting does not grant anything: only the roles of a group the employee
actually holds count.

The resolver caches each employee's complete effective set. Writers call
``invalidate`` after their transaction commits. The cache keeps a
per-employee version that every invalidation bumps; the resolver reads it
before resolving and the write is dropped unless it is still current, so a
reader that raced a writer in any process never re-populates the cache
with pre-commit data. Cached sets never outlive the earliest expiry among
the assignments they were built from.

Employees whose invalidation failed are served from storage by this
process, and the invalidation is retried on every later cache access until
it goes through.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Set, Union

from ....config.constants import AssignableType
from ....core.exceptions import CacheError, EmployeeNotFound
from ....utils.datetime import utc_now
from ...assignments.entities import AssignmentRepository
from ...cache.entities import PermissionCache
from ...catalog.entities import GroupRepository, PermissionRepository, RoleRepository
from ...employees.entities import Employee
from ..entities import PermissionBreakdown

logger = logging.getLogger(__name__)

EmployeeLike = Union[Employee, int]


def employee_id_of(employee: EmployeeLike) -> int:
    """Accept an Employee or a bare id.

    Raises EmployeeNotFound for unsaved employees and for anything that is
    not a positive integer id.
    """
    employee_id = employee.id if isinstance(employee, Employee) else employee
    if not isinstance(employee_id, int) or isinstance(employee_id, bool) or employee_id <= 0:
        raise EmployeeNotFound(employee_id)
    return employee_id


@dataclass
class _Resolution:
    resolved_at: datetime
    direct: Set[str] = field(default_factory=set)
    through_roles: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    through_groups: Dict[str, Dict[str, FrozenSet[str]]] = field(default_factory=dict)
    earliest_expiry: Optional[datetime] = None
    complete: bool = False
    matched: bool = False

    def breakdown(self) -> PermissionBreakdown:
        return PermissionBreakdown(
            direct=frozenset(self.direct),
            through_roles=dict(self.through_roles),
            through_groups=dict(self.through_groups),
        )


class PermissionResolver:
    """Computes and caches effective permission sets."""

    def __init__(
        self,
        assignment_repository: AssignmentRepository,
        role_repository: RoleRepository,
        group_repository: GroupRepository,
        permission_repository: PermissionRepository,
        cache: Optional[PermissionCache] = None,
        cache_ttl: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.assignments = assignment_repository
        self.roles = role_repository
        self.groups = group_repository
        self.permissions = permission_repository
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._bypass: Set[int] = set()

    # Queries

    async def has_permission(self, employee: EmployeeLike, permission_slug: str) -> bool:
        """Check one slug, stopping at the first source that grants it."""
        employee_id = employee_id_of(employee)
        cached = await self._read_cache(employee_id)
        if cached is not None:
            return permission_slug in cached

        version = await self._read_version(employee_id)
        resolution = await self._resolve(employee_id, target=permission_slug)
        if resolution.complete:
            await self._write_cache(employee_id, version, resolution)
        return resolution.matched

    async def effective_permissions(self, employee: EmployeeLike) -> FrozenSet[str]:
        """Full deduplicated set of slugs the employee holds right now."""
        employee_id = employee_id_of(employee)
        cached = await self._read_cache(employee_id)
        if cached is not None:
            return cached

        version = await self._read_version(employee_id)
        resolution = await self._resolve(employee_id)
        await self._write_cache(employee_id, version, resolution)
        slugs = resolution.breakdown().all
        logger.debug(f"Resolved {len(slugs)} permissions for employee {employee_id}")
        return slugs

    async def any_permission(self, employee: EmployeeLike, permission_slugs: Iterable[str]) -> bool:
        slugs = list(permission_slugs)
        if not slugs:
            return False
        held = await self.effective_permissions(employee)
        return any(slug in held for slug in slugs)

    async def all_permissions(self, employee: EmployeeLike, permission_slugs: Iterable[str]) -> bool:
        slugs = list(permission_slugs)
        if not slugs:
            return True
        held = await self.effective_permissions(employee)
        return all(slug in held for slug in slugs)

    async def permission_breakdown(self, employee: EmployeeLike) -> PermissionBreakdown:
        """Slugs grouped by the direct, role and group paths. Never cached."""
        return (await self._resolve(employee_id_of(employee))).breakdown()

    async def active_role_slugs(self, employee: EmployeeLike) -> FrozenSet[str]:
        """Slugs of roles assigned directly and currently active."""
        employee_id = employee_id_of(employee)
        role_ids = await self.assignments.active_ids(employee_id, AssignableType.ROLE, self.clock())
        return frozenset(role.slug for role in await self.roles.get_many(role_ids))

    async def active_group_slugs(self, employee: EmployeeLike) -> FrozenSet[str]:
        """Slugs of groups assigned directly and currently active."""
        employee_id = employee_id_of(employee)
        group_ids = await self.assignments.active_ids(employee_id, AssignableType.GROUP, self.clock())
        return frozenset(group.slug for group in await self.groups.get_many(group_ids))

    # Invalidation

    async def invalidate(self, employee_id: int) -> None:
        """Drop the employee's cached set. Call only after the write committed."""
        await self.invalidate_many([employee_id])

    async def invalidate_many(self, employee_ids: Iterable[int]) -> None:
        ids = sorted(set(employee_ids))
        if not ids or self.cache is None:
            return
        try:
            await self.cache.invalidate_many(ids)
        except CacheError as e:
            self._bypass.update(ids)
            logger.error(
                f"Failed to invalidate cached permissions for employees {ids}; "
                f"bypassing cache for them until a retry succeeds: {e}"
            )
            return
        self._bypass.difference_update(ids)
        logger.debug(f"Invalidated cached permissions for employees {ids}")

    def is_bypassed(self, employee_id: int) -> bool:
        return employee_id in self._bypass

    # Internals

    async def _resolve(self, employee_id: int, target: Optional[str] = None) -> _Resolution:
        now = self.clock()
        result = _Resolution(resolved_at=now)

        held: Dict[AssignableType, Set[int]] = defaultdict(set)
        for assignment in await self.assignments.list_for_employee(employee_id, now):
            held[assignment.assignable_type].add(assignment.assignable_id)
            if assignment.expires_at is not None and (
                result.earliest_expiry is None or assignment.expires_at < result.earliest_expiry
            ):
                result.earliest_expiry = assignment.expires_at

        permissions = await self.permissions.get_many(held[AssignableType.PERMISSION])
        result.direct = {p.slug for p in permissions}
        if target is not None and target in result.direct:
            result.matched = True
            return result

        roles = await self.roles.get_many(held[AssignableType.ROLE])
        by_role = await self.roles.permissions_by_role([r.id for r in roles])
        for role in roles:
            result.through_roles[role.slug] = frozenset(p.slug for p in by_role.get(role.id, []))
        if target is not None and any(target in s for s in result.through_roles.values()):
            result.matched = True
            return result

        groups = await self.groups.get_many(held[AssignableType.GROUP])
        group_roles = await self.roles.list_by_groups([g.id for g in groups])
        by_group_role = await self.roles.permissions_by_role([r.id for r in group_roles])
        for group in groups:
            result.through_groups[group.slug] = {
                role.slug: frozenset(p.slug for p in by_group_role.get(role.id, []))
                for role in group_roles
                if role.group_id == group.id
            }

        result.complete = True
        if target is not None:
            result.matched = any(
                target in slugs
                for roles_of_group in result.through_groups.values()
                for slugs in roles_of_group.values()
            )
        return result

    def _ttl_for(self, resolution: _Resolution) -> int:
        if resolution.earliest_expiry is None:
            return self.cache_ttl
        remaining = (resolution.earliest_expiry - resolution.resolved_at).total_seconds()
        return min(self.cache_ttl, math.floor(remaining))

    async def _retry_pending(self) -> None:
        """Replay invalidations that failed earlier."""
        if not self._bypass:
            return
        pending = sorted(self._bypass)
        try:
            await self.cache.invalidate_many(pending)
        except CacheError as e:
            logger.warning(f"Cache still unavailable for employees {pending}: {e}")
            return
        self._bypass.difference_update(pending)
        logger.info(f"Recovered cache invalidation for employees {pending}")

    async def _read_version(self, employee_id: int) -> Optional[int]:
        if self.cache is None or employee_id in self._bypass:
            return None
        try:
            return await self.cache.version(employee_id)
        except CacheError as e:
            logger.warning(f"Permission cache version read failed for employee {employee_id}: {e}")
            return None

    async def _read_cache(self, employee_id: int) -> Optional[FrozenSet[str]]:
        if self.cache is None:
            return None
        await self._retry_pending()
        if employee_id in self._bypass:
            return None
        try:
            cached = await self.cache.get(employee_id)
        except CacheError as e:
            logger.warning(f"Permission cache read failed for employee {employee_id}: {e}")
            return None
        logger.debug(f"Permission cache {'hit' if cached is not None else 'miss'} for employee {employee_id}")
        return cached

    async def _write_cache(
        self, employee_id: int, version: Optional[int], resolution: _Resolution
    ) -> None:
        # No version means the cache was unreachable or the employee is bypassed.
        if version is None or employee_id in self._bypass:
            return
        ttl = self._ttl_for(resolution)
        if ttl <= 0:
            return
        try:
            written = await self.cache.set(
                employee_id, resolution.breakdown().all, ttl, version=version
            )
        except CacheError as e:
            logger.warning(f"Permission cache write failed for employee {employee_id}: {e}")
            return
        if not written:
            logger.debug(f"Skipping cache write for employee {employee_id}: invalidated during resolution")
