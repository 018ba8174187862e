"""AsyncPG-based permission repository implementation."""

import logging
from typing import Iterable, List, Optional

import asyncpg

from ....core.exceptions import DatabaseError, DuplicatePermission
from ....database.connection import Database
from ....utils.datetime import ensure_utc
from ..entities import Permission

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, name, module, action, description, category, is_system, "
    "created_at, updated_at, deleted_at"
)


def build_permission_from_row(row: asyncpg.Record) -> Permission:
    """Build Permission entity from database row."""
    return Permission(
        id=row["id"],
        module=row["module"],
        action=row["action"],
        name=row["name"],
        description=row["description"],
        category=row["category"],
        is_system=row["is_system"],
        created_at=ensure_utc(row["created_at"]),
        updated_at=ensure_utc(row["updated_at"]),
        deleted_at=ensure_utc(row["deleted_at"]),
    )


class AsyncPGPermissionRepository:
    """AsyncPG implementation of PermissionRepository protocol."""

    def __init__(self, database: Database):
        self._db = database

    async def get_by_id(self, permission_id: int) -> Optional[Permission]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM permissions WHERE id = $1 AND deleted_at IS NULL",
                    permission_id,
                )
            return build_permission_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get permission by id {permission_id}: {e}")
            raise DatabaseError(f"Failed to retrieve permission: {e}")

    async def get_by_key(self, module: str, action: str) -> Optional[Permission]:
        lookup = Permission(id=None, module=module, action=action)
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {_COLUMNS} FROM permissions
                    WHERE module = $1 AND action = $2 AND deleted_at IS NULL
                    """,
                    lookup.module,
                    lookup.action,
                )
            return build_permission_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get permission {lookup.slug}: {e}")
            raise DatabaseError(f"Failed to retrieve permission: {e}")

    async def get_many(self, permission_ids: Iterable[int]) -> List[Permission]:
        ids = list(permission_ids)
        if not ids:
            return []
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS} FROM permissions
                    WHERE id = ANY($1::bigint[]) AND deleted_at IS NULL
                    ORDER BY module, action
                    """,
                    ids,
                )
            return [build_permission_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get permissions {ids}: {e}")
            raise DatabaseError(f"Failed to retrieve permissions: {e}")

    async def list_all(self, module: Optional[str] = None) -> List[Permission]:
        conditions = ["deleted_at IS NULL"]
        params = []
        if module is not None:
            params.append(Permission(id=None, module=module, action="read").module)
            conditions.append(f"module = ${len(params)}")
        query = f"""
            SELECT {_COLUMNS} FROM permissions
            WHERE {" AND ".join(conditions)}
            ORDER BY module, action
        """
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(query, *params)
            return [build_permission_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list permissions: {e}")
            raise DatabaseError(f"Failed to list permissions: {e}")

    async def create(self, permission: Permission) -> Permission:
        query = f"""
            INSERT INTO permissions (name, slug, module, action, description, category, is_system)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    permission.name,
                    permission.slug,
                    permission.module,
                    permission.action,
                    permission.description,
                    permission.category,
                    permission.is_system,
                )
            return build_permission_from_row(row)
        except asyncpg.UniqueViolationError:
            raise DuplicatePermission(permission.module, permission.action)
        except Exception as e:
            logger.error(f"Failed to create permission {permission.slug}: {e}")
            raise DatabaseError(f"Failed to create permission: {e}")

    async def update(self, permission: Permission) -> Permission:
        query = f"""
            UPDATE permissions
            SET name = $2, slug = $3, module = $4, action = $5, description = $6,
                category = $7, is_system = $8, updated_at = NOW()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    permission.id,
                    permission.name,
                    permission.slug,
                    permission.module,
                    permission.action,
                    permission.description,
                    permission.category,
                    permission.is_system,
                )
        except asyncpg.UniqueViolationError:
            raise DuplicatePermission(permission.module, permission.action)
        except Exception as e:
            logger.error(f"Failed to update permission {permission.id}: {e}")
            raise DatabaseError(f"Failed to update permission: {e}")
        if row is None:
            raise DatabaseError(f"Permission {permission.id} does not exist")
        return build_permission_from_row(row)

    async def soft_delete(self, permission_id: int) -> bool:
        try:
            async with self._db.connection() as conn:
                result = await conn.execute(
                    """
                    UPDATE permissions SET deleted_at = NOW(), updated_at = NOW()
                    WHERE id = $1 AND deleted_at IS NULL
                    """,
                    permission_id,
                )
            return result.split()[-1] != "0"
        except Exception as e:
            logger.error(f"Failed to delete permission {permission_id}: {e}")
            raise DatabaseError(f"Failed to delete permission: {e}")
