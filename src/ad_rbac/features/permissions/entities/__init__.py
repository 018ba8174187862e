"""Permission resolution entities."""

from .breakdown import PermissionBreakdown

__all__ = ["PermissionBreakdown"]
