"""Catalog services."""

from .catalog_service import CatalogService
from .permission_scanner import PermissionScanner

__all__ = ["CatalogService", "PermissionScanner"]
