"""Read-only reporting over assignments and the role catalog."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ....utils.datetime import days_from, utc_now
from ...catalog.entities import RoleRepository
from ..entities import Assignment, AssignmentRepository, AssignmentStatistics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogStatistics:
    """Role/permission and role/group link counts."""

    total_links: int
    roles_with_permissions: int
    assigned_permissions: int
    total_roles: int
    roles_in_groups: int
    groups_with_roles: int
    top_roles: List[Tuple[str, int]] = field(default_factory=list)
    top_permissions: List[Tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "permission_assignments": {
                "total_links": self.total_links,
                "roles_with_permissions": self.roles_with_permissions,
                "assigned_permissions": self.assigned_permissions,
            },
            "role_assignments": {
                "total_roles": self.total_roles,
                "roles_in_groups": self.roles_in_groups,
                "groups_with_roles": self.groups_with_roles,
            },
            "top_roles": [{"role": slug, "permission_count": n} for slug, n in self.top_roles],
            "top_permissions": [{"permission": slug, "role_count": n} for slug, n in self.top_permissions],
        }


class StatisticsService:
    """Aggregate views; no writes, no caching."""

    def __init__(
        self,
        assignment_repository: AssignmentRepository,
        role_repository: RoleRepository,
        expiring_days_default: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.assignments = assignment_repository
        self.roles = role_repository
        self.expiring_days_default = expiring_days_default
        self.clock = clock

    async def get_statistics(self) -> AssignmentStatistics:
        total, active, expired, inactive, by_type = await self.assignments.counts(self.clock())
        logger.debug(f"Assignment statistics: total={total}, active={active}, expired={expired}")
        return AssignmentStatistics(
            total=total, active=active, expired=expired, inactive=inactive, by_type=by_type
        )

    async def get_expiring_assignments(self, days_ahead: Optional[int] = None) -> List[Assignment]:
        """Active assignments expiring within ``days_ahead`` days, soonest first."""
        days = self.expiring_days_default if days_ahead is None else days_ahead
        if days < 0:
            raise ValueError(f"days_ahead cannot be negative, got {days}")
        now = self.clock()
        return await self.assignments.list_expiring(now, days_from(now, days))

    async def catalog_statistics(self, top: int = 10) -> CatalogStatistics:
        roles = await self.roles.list_all()
        by_role = await self.roles.permissions_by_role([r.id for r in roles])

        role_counts: List[Tuple[str, int]] = []
        permission_counts: Dict[str, int] = {}
        for role in roles:
            linked = by_role.get(role.id, [])
            if linked:
                role_counts.append((role.slug, len(linked)))
            for permission in linked:
                permission_counts[permission.slug] = permission_counts.get(permission.slug, 0) + 1

        role_counts.sort(key=lambda item: (-item[1], item[0]))
        top_permissions = sorted(permission_counts.items(), key=lambda item: (-item[1], item[0]))
        grouped = [r for r in roles if r.group_id is not None]

        return CatalogStatistics(
            total_links=sum(n for _, n in role_counts),
            roles_with_permissions=len(role_counts),
            assigned_permissions=len(permission_counts),
            total_roles=len(roles),
            roles_in_groups=len(grouped),
            groups_with_roles=len({r.group_id for r in grouped}),
            top_roles=role_counts[:top],
            top_permissions=top_permissions[:top],
        )
