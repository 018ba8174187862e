"""Effective permissions grouped by the path that grants them."""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet


@dataclass(frozen=True)
class PermissionBreakdown:
    """Slugs reachable by an employee, keyed by source.

    ``through_roles`` maps a directly held role slug to its permission slugs;
    ``through_groups`` maps a held group slug to its roles and their slugs.
    """

    direct: FrozenSet[str] = frozenset()
    through_roles: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    through_groups: Dict[str, Dict[str, FrozenSet[str]]] = field(default_factory=dict)

    @property
    def all(self) -> FrozenSet[str]:
        slugs = set(self.direct)
        for role_slugs in self.through_roles.values():
            slugs.update(role_slugs)
        for roles in self.through_groups.values():
            for role_slugs in roles.values():
                slugs.update(role_slugs)
        return frozenset(slugs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direct": sorted(self.direct),
            "through_roles": {r: sorted(s) for r, s in self.through_roles.items()},
            "through_groups": {
                g: {r: sorted(s) for r, s in roles.items()} for g, roles in self.through_groups.items()
            },
        }
