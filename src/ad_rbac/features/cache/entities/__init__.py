"""Cache entities and protocols."""

from .protocols import PermissionCache

__all__ = ["PermissionCache"]
