"""AsyncPG-based group repository implementation."""

import logging
from typing import Iterable, List, Optional

import asyncpg

from ....core.exceptions import DatabaseError, DuplicateSlug
from ....database.connection import Database
from ....utils.datetime import ensure_utc
from ..entities import Group

logger = logging.getLogger(__name__)

_COLUMNS = "id, name, slug, description, parent_id, is_system, created_at, updated_at, deleted_at"


class AsyncPGGroupRepository:
    """AsyncPG implementation of GroupRepository protocol."""

    def __init__(self, database: Database):
        self._db = database

    def _build_group_from_row(self, row: asyncpg.Record) -> Group:
        """Build Group entity from database row."""
        return Group(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            parent_id=row["parent_id"],
            is_system=row["is_system"],
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
            deleted_at=ensure_utc(row["deleted_at"]),
        )

    async def get_by_id(self, group_id: int) -> Optional[Group]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM groups WHERE id = $1 AND deleted_at IS NULL", group_id
                )
            return self._build_group_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get group by id {group_id}: {e}")
            raise DatabaseError(f"Failed to retrieve group: {e}")

    async def get_by_slug(self, slug: str) -> Optional[Group]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM groups WHERE slug = $1 AND deleted_at IS NULL", slug
                )
            return self._build_group_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get group by slug {slug}: {e}")
            raise DatabaseError(f"Failed to retrieve group: {e}")

    async def get_many(self, group_ids: Iterable[int]) -> List[Group]:
        ids = list(group_ids)
        if not ids:
            return []
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS} FROM groups
                    WHERE id = ANY($1::bigint[]) AND deleted_at IS NULL
                    ORDER BY name, id
                    """,
                    ids,
                )
            return [self._build_group_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get groups {ids}: {e}")
            raise DatabaseError(f"Failed to retrieve groups: {e}")

    async def list_all(self) -> List[Group]:
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM groups WHERE deleted_at IS NULL ORDER BY name, id"
                )
            return [self._build_group_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list groups: {e}")
            raise DatabaseError(f"Failed to list groups: {e}")

    async def create(self, group: Group) -> Group:
        query = f"""
            INSERT INTO groups (name, slug, description, parent_id, is_system)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query, group.name, group.slug, group.description, group.parent_id, group.is_system
                )
            return self._build_group_from_row(row)
        except asyncpg.UniqueViolationError:
            raise DuplicateSlug("group", group.slug)
        except Exception as e:
            logger.error(f"Failed to create group {group.slug}: {e}")
            raise DatabaseError(f"Failed to create group: {e}")

    async def update(self, group: Group) -> Group:
        query = f"""
            UPDATE groups
            SET name = $2, slug = $3, description = $4, parent_id = $5,
                is_system = $6, updated_at = NOW()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    group.id,
                    group.name,
                    group.slug,
                    group.description,
                    group.parent_id,
                    group.is_system,
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateSlug("group", group.slug)
        except Exception as e:
            logger.error(f"Failed to update group {group.id}: {e}")
            raise DatabaseError(f"Failed to update group: {e}")
        if row is None:
            raise DatabaseError(f"Group {group.id} does not exist")
        return self._build_group_from_row(row)

    async def soft_delete(self, group_id: int) -> bool:
        try:
            async with self._db.connection() as conn:
                result = await conn.execute(
                    """
                    UPDATE groups SET deleted_at = NOW(), updated_at = NOW()
                    WHERE id = $1 AND deleted_at IS NULL
                    """,
                    group_id,
                )
            return result.split()[-1] != "0"
        except Exception as e:
            logger.error(f"Failed to delete group {group_id}: {e}")
            raise DatabaseError(f"Failed to delete group: {e}")

    async def count_children(self, group_id: int) -> int:
        try:
            async with self._db.connection() as conn:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM groups WHERE parent_id = $1 AND deleted_at IS NULL",
                    group_id,
                )
        except Exception as e:
            logger.error(f"Failed to count children of group {group_id}: {e}")
            raise DatabaseError(f"Failed to count child groups: {e}")
