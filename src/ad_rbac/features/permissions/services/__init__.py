"""Permission resolution services."""

from .permission_resolver import PermissionResolver

__all__ = ["PermissionResolver"]
