"""Catalog entities and protocols."""

from .group import Group, GroupNode
from .permission import Permission
from .protocols import GroupRepository, PermissionRepository, RoleRepository
from .role import Role
from .scan_result import ScanResult

__all__ = [
    "Group",
    "GroupNode",
    "Permission",
    "Role",
    "ScanResult",
    "GroupRepository",
    "PermissionRepository",
    "RoleRepository",
]
