"""AsyncPG-based role repository implementation.

Also owns the ``role_permissions`` link table.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

import asyncpg

from ....core.exceptions import DatabaseError, DuplicateSlug
from ....database.connection import Database
from ....utils.datetime import ensure_utc
from ..entities import Permission, Role
from .permission_repository import build_permission_from_row

logger = logging.getLogger(__name__)

_COLUMNS = "id, name, slug, description, group_id, is_system, created_at, updated_at, deleted_at"


class AsyncPGRoleRepository:
    """AsyncPG implementation of RoleRepository protocol."""

    def __init__(self, database: Database):
        self._db = database

    def _build_role_from_row(self, row: asyncpg.Record) -> Role:
        """Build Role entity from database row."""
        return Role(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            group_id=row["group_id"],
            is_system=row["is_system"],
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
            deleted_at=ensure_utc(row["deleted_at"]),
        )

    async def get_by_id(self, role_id: int) -> Optional[Role]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM roles WHERE id = $1 AND deleted_at IS NULL", role_id
                )
            return self._build_role_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get role by id {role_id}: {e}")
            raise DatabaseError(f"Failed to retrieve role: {e}")

    async def get_by_slug(self, slug: str) -> Optional[Role]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM roles WHERE slug = $1 AND deleted_at IS NULL", slug
                )
            return self._build_role_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get role by slug {slug}: {e}")
            raise DatabaseError(f"Failed to retrieve role: {e}")

    async def get_many(self, role_ids: Iterable[int]) -> List[Role]:
        ids = list(role_ids)
        if not ids:
            return []
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS} FROM roles
                    WHERE id = ANY($1::bigint[]) AND deleted_at IS NULL
                    ORDER BY name, id
                    """,
                    ids,
                )
            return [self._build_role_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get roles {ids}: {e}")
            raise DatabaseError(f"Failed to retrieve roles: {e}")

    async def list_all(self) -> List[Role]:
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM roles WHERE deleted_at IS NULL ORDER BY name, id"
                )
            return [self._build_role_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list roles: {e}")
            raise DatabaseError(f"Failed to list roles: {e}")

    async def list_by_groups(self, group_ids: Iterable[int]) -> List[Role]:
        ids = list(group_ids)
        if not ids:
            return []
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS} FROM roles
                    WHERE group_id = ANY($1::bigint[]) AND deleted_at IS NULL
                    ORDER BY name, id
                    """,
                    ids,
                )
            return [self._build_role_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list roles for groups {ids}: {e}")
            raise DatabaseError(f"Failed to list roles: {e}")

    async def create(self, role: Role) -> Role:
        query = f"""
            INSERT INTO roles (name, slug, description, group_id, is_system)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query, role.name, role.slug, role.description, role.group_id, role.is_system
                )
            return self._build_role_from_row(row)
        except asyncpg.UniqueViolationError:
            raise DuplicateSlug("role", role.slug)
        except Exception as e:
            logger.error(f"Failed to create role {role.slug}: {e}")
            raise DatabaseError(f"Failed to create role: {e}")

    async def update(self, role: Role) -> Role:
        query = f"""
            UPDATE roles
            SET name = $2, slug = $3, description = $4, group_id = $5,
                is_system = $6, updated_at = NOW()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query, role.id, role.name, role.slug, role.description, role.group_id, role.is_system
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateSlug("role", role.slug)
        except Exception as e:
            logger.error(f"Failed to update role {role.id}: {e}")
            raise DatabaseError(f"Failed to update role: {e}")
        if row is None:
            raise DatabaseError(f"Role {role.id} does not exist")
        return self._build_role_from_row(row)

    async def soft_delete(self, role_id: int) -> bool:
        try:
            async with self._db.connection() as conn:
                result = await conn.execute(
                    """
                    UPDATE roles SET deleted_at = NOW(), updated_at = NOW()
                    WHERE id = $1 AND deleted_at IS NULL
                    """,
                    role_id,
                )
            return result.split()[-1] != "0"
        except Exception as e:
            logger.error(f"Failed to delete role {role_id}: {e}")
            raise DatabaseError(f"Failed to delete role: {e}")

    async def count_by_group(self, group_id: int) -> int:
        try:
            async with self._db.connection() as conn:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM roles WHERE group_id = $1 AND deleted_at IS NULL", group_id
                )
        except Exception as e:
            logger.error(f"Failed to count roles of group {group_id}: {e}")
            raise DatabaseError(f"Failed to count roles: {e}")

    async def permission_ids(self, role_id: int) -> Set[int]:
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    "SELECT permission_id FROM role_permissions WHERE role_id = $1", role_id
                )
            return {row["permission_id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to get permissions of role {role_id}: {e}")
            raise DatabaseError(f"Failed to get role permissions: {e}")

    async def attach_permissions(self, role_id: int, permission_ids: Iterable[int]) -> Set[int]:
        ids = sorted(set(permission_ids))
        if not ids:
            return set()
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    """
                    INSERT INTO role_permissions (role_id, permission_id)
                    SELECT $1, UNNEST($2::bigint[])
                    ON CONFLICT (role_id, permission_id) DO NOTHING
                    RETURNING permission_id
                    """,
                    role_id,
                    ids,
                )
            return {row["permission_id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to attach permissions to role {role_id}: {e}")
            raise DatabaseError(f"Failed to attach permissions: {e}")

    async def detach_permissions(self, role_id: int, permission_ids: Iterable[int]) -> Set[int]:
        ids = sorted(set(permission_ids))
        if not ids:
            return set()
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    """
                    DELETE FROM role_permissions
                    WHERE role_id = $1 AND permission_id = ANY($2::bigint[])
                    RETURNING permission_id
                    """,
                    role_id,
                    ids,
                )
            return {row["permission_id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to detach permissions from role {role_id}: {e}")
            raise DatabaseError(f"Failed to detach permissions: {e}")

    async def roles_with_permission(self, permission_id: int) -> Set[int]:
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    """
                    SELECT rp.role_id
                    FROM role_permissions rp
                    JOIN roles r ON r.id = rp.role_id AND r.deleted_at IS NULL
                    WHERE rp.permission_id = $1
                    """,
                    permission_id,
                )
            return {row["role_id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to get roles with permission {permission_id}: {e}")
            raise DatabaseError(f"Failed to get roles with permission: {e}")

    async def permissions_by_role(self, role_ids: Iterable[int]) -> Dict[int, List[Permission]]:
        ids = list(set(role_ids))
        result: Dict[int, List[Permission]] = {rid: [] for rid in ids}
        if not ids:
            return result
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    """
                    SELECT rp.role_id, p.id, p.name, p.module, p.action, p.description,
                           p.category, p.is_system, p.created_at, p.updated_at, p.deleted_at
                    FROM role_permissions rp
                    JOIN permissions p ON p.id = rp.permission_id AND p.deleted_at IS NULL
                    WHERE rp.role_id = ANY($1::bigint[])
                    ORDER BY p.module, p.action
                    """,
                    ids,
                )
        except Exception as e:
            logger.error(f"Failed to get permissions for roles {ids}: {e}")
            raise DatabaseError(f"Failed to get role permissions: {e}")
        for row in rows:
            result[row["role_id"]].append(build_permission_from_row(row))
        return result
