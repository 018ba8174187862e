"""AsyncPG-based employee repository implementation."""

import logging
from typing import Iterable, Optional, Set

import asyncpg

from ....core.exceptions import DatabaseError
from ....database.connection import Database
from ....utils.datetime import ensure_utc
from ..entities import Employee

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, username, employee_id, email, first_name, last_name, department,
    position, is_active, last_login_at, synced_at, created_at, updated_at,
    deleted_at
"""


class AsyncPGEmployeeRepository:
    """AsyncPG implementation of EmployeeRepository protocol."""

    def __init__(self, database: Database):
        self._db = database

    def _build_employee_from_row(self, row: asyncpg.Record) -> Employee:
        """Build Employee entity from database row."""
        return Employee(
            id=row["id"],
            username=row["username"],
            employee_id=row["employee_id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            department=row["department"],
            position=row["position"],
            is_active=row["is_active"],
            last_login_at=ensure_utc(row["last_login_at"]),
            synced_at=ensure_utc(row["synced_at"]),
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
            deleted_at=ensure_utc(row["deleted_at"]),
        )

    async def get_by_id(self, employee_id: int) -> Optional[Employee]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM employees WHERE id = $1", employee_id
                )
            return self._build_employee_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get employee by id {employee_id}: {e}")
            raise DatabaseError(f"Failed to retrieve employee: {e}")

    async def get_by_username(self, username: str) -> Optional[Employee]:
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM employees WHERE LOWER(username) = LOWER($1)",
                    username.strip(),
                )
            return self._build_employee_from_row(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get employee by username {username}: {e}")
            raise DatabaseError(f"Failed to retrieve employee: {e}")

    async def create(self, employee: Employee) -> Employee:
        query = f"""
            INSERT INTO employees (
                username, employee_id, email, first_name, last_name,
                department, position, is_active, last_login_at, synced_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    employee.username,
                    employee.employee_id,
                    employee.email,
                    employee.first_name,
                    employee.last_name,
                    employee.department,
                    employee.position,
                    employee.is_active,
                    employee.last_login_at,
                    employee.synced_at,
                )
            return self._build_employee_from_row(row)
        except Exception as e:
            logger.error(f"Failed to create employee {employee.username}: {e}")
            raise DatabaseError(f"Failed to create employee: {e}")

    async def update(self, employee: Employee) -> Employee:
        query = f"""
            UPDATE employees
            SET employee_id = $2, email = $3, first_name = $4, last_name = $5,
                department = $6, position = $7, is_active = $8,
                last_login_at = $9, synced_at = $10, deleted_at = $11,
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    employee.id,
                    employee.employee_id,
                    employee.email,
                    employee.first_name,
                    employee.last_name,
                    employee.department,
                    employee.position,
                    employee.is_active,
                    employee.last_login_at,
                    employee.synced_at,
                    employee.deleted_at,
                )
        except Exception as e:
            logger.error(f"Failed to update employee {employee.id}: {e}")
            raise DatabaseError(f"Failed to update employee: {e}")
        if row is None:
            raise DatabaseError(f"Employee {employee.id} does not exist")
        return self._build_employee_from_row(row)

    async def list_ids_existing(self, ids: Iterable[int]) -> Set[int]:
        id_list = list(ids)
        if not id_list:
            return set()
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch("SELECT id FROM employees WHERE id = ANY($1::bigint[])", id_list)
            return {row["id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to check employee ids: {e}")
            raise DatabaseError(f"Failed to check employee ids: {e}")
