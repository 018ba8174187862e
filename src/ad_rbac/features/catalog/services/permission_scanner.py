"""Derives permissions for application modules from their field names.

Every module gets the CRUD actions. A special action is added when its name
appears inside one of the module's field names, so a ``leave_request``
module with an ``approved_by`` column gains ``leave_request.approve``.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ....config.constants import DefaultActions
from ....core.exceptions import HasDependents, ProtectedEntityError
from ....utils.slugs import snake_case
from ..entities import Permission, PermissionRepository, ScanResult
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)


class PermissionScanner:
    """Keeps each module's permissions in line with its derived action list."""

    def __init__(
        self,
        catalog: CatalogService,
        permission_repository: PermissionRepository,
        default_actions: Sequence[str] = DefaultActions.CRUD,
        special_actions: Sequence[str] = DefaultActions.SPECIAL,
    ):
        self.catalog = catalog
        self.permissions = permission_repository
        self.default_actions = [a.lower() for a in default_actions]
        self.special_actions = [a.lower() for a in special_actions]

    def detect_special_actions(self, fields: Iterable[str]) -> List[str]:
        """Special actions named inside the fields, first match per field."""
        found: List[str] = []
        for name in fields:
            lowered = name.lower()
            for action in self.special_actions:
                if action in lowered:
                    if action not in found:
                        found.append(action)
                    break
        return found

    def actions_for(self, fields: Iterable[str] = (), actions: Optional[Iterable[str]] = None) -> List[str]:
        if actions is not None:
            explicit: List[str] = []
            for action in actions:
                action = action.strip().lower()
                if action and action not in explicit:
                    explicit.append(action)
            return explicit
        derived = list(self.default_actions)
        derived.extend(a for a in self.detect_special_actions(fields) if a not in derived)
        return derived

    async def sync_module(
        self,
        module: str,
        fields: Iterable[str] = (),
        actions: Optional[Iterable[str]] = None,
    ) -> ScanResult:
        """Create missing permissions and remove stale ones for ``module``.

        ``actions`` overrides derivation entirely. Stale permissions that are
        still linked to roles or held by employees, or that are system
        permissions, are kept and logged.
        """
        module = snake_case(module)
        wanted = self.actions_for(fields, actions)
        result = ScanResult(module=module)

        existing: Dict[str, Permission] = {
            p.action: p for p in await self.permissions.list_all(module=module)
        }

        for action in wanted:
            if action in existing:
                result.unchanged.append(existing[action].slug)
                continue
            permission = await self.catalog.create_permission(module=module, action=action)
            result.created.append(permission.slug)

        for action, permission in sorted(existing.items()):
            if action in wanted:
                continue
            await self._remove(permission, result)

        if result.changed:
            logger.info(
                f"Synced module {module}: created {len(result.created)}, "
                f"removed {len(result.removed)}, kept {len(result.kept)}"
            )
        return result

    async def sync_modules(
        self, modules: Mapping[str, Iterable[str]], remove_missing: bool = False
    ) -> Dict[str, ScanResult]:
        """Run ``sync_module`` for each module name mapped to its field names.

        With ``remove_missing`` the permissions of modules not in the mapping
        are treated as stale too.
        """
        results: Dict[str, ScanResult] = {}
        for module, fields in modules.items():
            result = await self.sync_module(module, fields)
            results[result.module] = result

        if remove_missing:
            orphaned: Dict[str, List[Permission]] = {}
            for permission in await self.permissions.list_all():
                if permission.module not in results:
                    orphaned.setdefault(permission.module, []).append(permission)
            for module, permissions in sorted(orphaned.items()):
                result = ScanResult(module=module)
                for permission in permissions:
                    await self._remove(permission, result)
                logger.info(f"Removed orphaned module {module}: {len(result.removed)} removed, {len(result.kept)} kept")
                results[module] = result
        return results

    async def _remove(self, permission: Permission, result: ScanResult) -> None:
        try:
            await self.catalog.delete_permission(permission.id)
        except (HasDependents, ProtectedEntityError) as e:
            logger.warning(f"Keeping stale permission {permission.slug}: {e.message}")
            result.kept.append(permission.slug)
            return
        result.removed.append(permission.slug)
