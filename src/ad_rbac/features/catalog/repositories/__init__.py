"""Catalog repositories."""

from .group_repository import AsyncPGGroupRepository
from .memory_repository import (
    InMemoryGroupRepository,
    InMemoryPermissionRepository,
    InMemoryRoleRepository,
)
from .permission_repository import AsyncPGPermissionRepository
from .role_repository import AsyncPGRoleRepository

__all__ = [
    "AsyncPGGroupRepository",
    "AsyncPGPermissionRepository",
    "AsyncPGRoleRepository",
    "InMemoryGroupRepository",
    "InMemoryPermissionRepository",
    "InMemoryRoleRepository",
]
