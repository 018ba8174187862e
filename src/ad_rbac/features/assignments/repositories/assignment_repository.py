"""AsyncPG-based assignment repository implementation.

The partial unique index ``uq_assignments_active`` backs up the advisory
lock taken by the service: a race that slips past the lock surfaces as
``DuplicateActiveAssignment`` rather than a second active row.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

import asyncpg

from ....config.constants import AssignableType, HistoryAction
from ....core.exceptions import DatabaseError, DuplicateActiveAssignment
from ....core.value_objects import AssignableRef
from ....database.connection import Database
from ....utils.datetime import ensure_utc
from ..entities import Assignment, AssignmentHistory

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, employee_id, assignable_type, assignable_id, assignment_reason,
    assigned_by, assigned_at, expires_at, is_active, created_at, updated_at
"""

_CURRENT = "is_active AND (expires_at IS NULL OR expires_at > $%d)"


def _current(param: int) -> str:
    return _CURRENT % param


class AsyncPGAssignmentRepository:
    """AsyncPG implementation of AssignmentRepository protocol."""

    def __init__(self, database: Database):
        self._db = database

    def _build_assignment_from_row(self, row: asyncpg.Record) -> Assignment:
        """Build Assignment entity from database row."""
        return Assignment(
            id=row["id"],
            employee_id=row["employee_id"],
            assignable_type=AssignableType(row["assignable_type"]),
            assignable_id=row["assignable_id"],
            assignment_reason=row["assignment_reason"],
            assigned_by=row["assigned_by"],
            assigned_at=ensure_utc(row["assigned_at"]),
            expires_at=ensure_utc(row["expires_at"]),
            is_active=row["is_active"],
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
        )

    async def _fetch(self, query: str, *args) -> List[Assignment]:
        async with self._db.connection() as conn:
            rows = await conn.fetch(query, *args)
        return [self._build_assignment_from_row(row) for row in rows]

    async def create(self, assignment: Assignment, now: datetime) -> Assignment:
        query = f"""
            INSERT INTO assignments (
                employee_id, assignable_type, assignable_id, assignment_reason,
                assigned_by, assigned_at, expires_at, is_active
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, TRUE)
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    assignment.employee_id,
                    assignment.assignable_type.value,
                    assignment.assignable_id,
                    assignment.assignment_reason,
                    assignment.assigned_by,
                    assignment.assigned_at or now,
                    assignment.expires_at,
                )
            return self._build_assignment_from_row(row)
        except asyncpg.UniqueViolationError:
            logger.warning(
                f"Unique index rejected assignment of {assignment.ref} to employee {assignment.employee_id}"
            )
            raise DuplicateActiveAssignment(
                assignment.employee_id, assignment.assignable_type.value, assignment.assignable_id
            )
        except Exception as e:
            logger.error(f"Failed to create assignment for employee {assignment.employee_id}: {e}")
            raise DatabaseError(f"Failed to create assignment: {e}")

    async def get(self, assignment_id: int) -> Optional[Assignment]:
        try:
            rows = await self._fetch(f"SELECT {_COLUMNS} FROM assignments WHERE id = $1", assignment_id)
            return rows[0] if rows else None
        except Exception as e:
            logger.error(f"Failed to get assignment {assignment_id}: {e}")
            raise DatabaseError(f"Failed to retrieve assignment: {e}")

    async def save(self, assignment: Assignment, now: datetime) -> Assignment:
        query = f"""
            UPDATE assignments
            SET is_active = $2, expires_at = $3, assignment_reason = $4, updated_at = $5
            WHERE id = $1
            RETURNING {_COLUMNS}
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    assignment.id,
                    assignment.is_active,
                    assignment.expires_at,
                    assignment.assignment_reason,
                    now,
                )
        except Exception as e:
            logger.error(f"Failed to save assignment {assignment.id}: {e}")
            raise DatabaseError(f"Failed to save assignment: {e}")
        if row is None:
            raise DatabaseError(f"Assignment {assignment.id} does not exist")
        return self._build_assignment_from_row(row)

    async def find_active(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> Optional[Assignment]:
        query = f"""
            SELECT {_COLUMNS} FROM assignments
            WHERE employee_id = $1 AND assignable_type = $2 AND assignable_id = $3
              AND {_current(4)}
            LIMIT 1
        """
        try:
            rows = await self._fetch(query, employee_id, ref.type.value, ref.id, now)
            return rows[0] if rows else None
        except Exception as e:
            logger.error(f"Failed to find active assignment {ref} for employee {employee_id}: {e}")
            raise DatabaseError(f"Failed to find active assignment: {e}")

    async def deactivate_expired(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> List[Assignment]:
        query = f"""
            UPDATE assignments
            SET is_active = FALSE, updated_at = NOW()
            WHERE employee_id = $1 AND assignable_type = $2 AND assignable_id = $3
              AND is_active AND expires_at IS NOT NULL AND expires_at <= $4
            RETURNING {_COLUMNS}
        """
        try:
            return await self._fetch(query, employee_id, ref.type.value, ref.id, now)
        except Exception as e:
            logger.error(f"Failed to deactivate expired {ref} for employee {employee_id}: {e}")
            raise DatabaseError(f"Failed to deactivate expired assignments: {e}")

    async def list_for_employee(
        self, employee_id: int, now: datetime, include_inactive: bool = False
    ) -> List[Assignment]:
        if include_inactive:
            query = f"SELECT {_COLUMNS} FROM assignments WHERE employee_id = $1 ORDER BY id DESC"
            args = (employee_id,)
        else:
            query = f"""
                SELECT {_COLUMNS} FROM assignments
                WHERE employee_id = $1 AND {_current(2)}
                ORDER BY id DESC
            """
            args = (employee_id, now)
        try:
            return await self._fetch(query, *args)
        except Exception as e:
            logger.error(f"Failed to list assignments for employee {employee_id}: {e}")
            raise DatabaseError(f"Failed to list assignments: {e}")

    async def active_ids(
        self, employee_id: int, assignable_type: AssignableType, now: datetime
    ) -> Set[int]:
        query = f"""
            SELECT assignable_id FROM assignments
            WHERE employee_id = $1 AND assignable_type = $2 AND {_current(3)}
        """
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(query, employee_id, assignable_type.value, now)
            return {row["assignable_id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to get active {assignable_type.value} ids for employee {employee_id}: {e}")
            raise DatabaseError(f"Failed to get active assignment ids: {e}")

    async def holders(self, ref: AssignableRef, now: datetime) -> Set[int]:
        return await self.holders_of_any(ref.type, [ref.id], now)

    async def holders_of_any(
        self, assignable_type: AssignableType, ids: Iterable[int], now: datetime
    ) -> Set[int]:
        id_list = list(set(ids))
        if not id_list:
            return set()
        query = f"""
            SELECT DISTINCT employee_id FROM assignments
            WHERE assignable_type = $1 AND assignable_id = ANY($2::bigint[]) AND {_current(3)}
        """
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(query, assignable_type.value, id_list, now)
            return {row["employee_id"] for row in rows}
        except Exception as e:
            logger.error(f"Failed to get holders of {assignable_type.value} {id_list}: {e}")
            raise DatabaseError(f"Failed to get assignment holders: {e}")

    async def list_expired_active(self, now: datetime) -> List[Assignment]:
        query = f"""
            SELECT {_COLUMNS} FROM assignments
            WHERE is_active AND expires_at IS NOT NULL AND expires_at <= $1
            ORDER BY expires_at, id
        """
        try:
            return await self._fetch(query, now)
        except Exception as e:
            logger.error(f"Failed to list expired assignments: {e}")
            raise DatabaseError(f"Failed to list expired assignments: {e}")

    async def list_expiring(self, now: datetime, until: datetime) -> List[Assignment]:
        query = f"""
            SELECT {_COLUMNS} FROM assignments
            WHERE {_current(1)} AND expires_at IS NOT NULL AND expires_at <= $2
            ORDER BY expires_at, id
        """
        try:
            return await self._fetch(query, now, until)
        except Exception as e:
            logger.error(f"Failed to list expiring assignments: {e}")
            raise DatabaseError(f"Failed to list expiring assignments: {e}")

    async def counts(self, now: datetime) -> Tuple[int, int, int, int, Dict[str, int]]:
        totals_query = f"""
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE {_current(1)}) AS active,
                COUNT(*) FILTER (WHERE is_active AND expires_at <= $1) AS expired,
                COUNT(*) FILTER (WHERE NOT is_active) AS inactive
            FROM assignments
        """
        by_type_query = """
            SELECT assignable_type, COUNT(*) AS total
            FROM assignments
            GROUP BY assignable_type
        """
        try:
            async with self._db.connection() as conn:
                totals = await conn.fetchrow(totals_query, now)
                rows = await conn.fetch(by_type_query)
        except Exception as e:
            logger.error(f"Failed to count assignments: {e}")
            raise DatabaseError(f"Failed to count assignments: {e}")
        by_type = {row["assignable_type"]: row["total"] for row in rows}
        return totals["total"], totals["active"], totals["expired"], totals["inactive"], by_type


class AsyncPGAssignmentHistoryRepository:
    """AsyncPG implementation of AssignmentHistoryRepository protocol."""

    def __init__(self, database: Database):
        self._db = database

    def _build_history_from_row(self, row: asyncpg.Record) -> AssignmentHistory:
        changes = row["changes"]
        if isinstance(changes, str):
            changes = json.loads(changes)
        return AssignmentHistory(
            id=row["id"],
            assignment_id=row["assignment_id"],
            action=HistoryAction(row["action"]),
            changes=changes or {},
            changed_by=row["changed_by"],
            created_at=ensure_utc(row["created_at"]),
        )

    async def append(self, entry: AssignmentHistory) -> AssignmentHistory:
        query = """
            INSERT INTO assignment_history (assignment_id, action, changes, changed_by)
            VALUES ($1, $2, $3::jsonb, $4)
            RETURNING id, assignment_id, action, changes, changed_by, created_at
        """
        try:
            async with self._db.connection() as conn:
                row = await conn.fetchrow(
                    query,
                    entry.assignment_id,
                    entry.action.value,
                    json.dumps(entry.changes, default=str),
                    entry.changed_by,
                )
            return self._build_history_from_row(row)
        except Exception as e:
            logger.error(f"Failed to append history for assignment {entry.assignment_id}: {e}")
            raise DatabaseError(f"Failed to append assignment history: {e}")

    async def list_for_assignment(self, assignment_id: int) -> List[AssignmentHistory]:
        query = """
            SELECT id, assignment_id, action, changes, changed_by, created_at
            FROM assignment_history
            WHERE assignment_id = $1
            ORDER BY id
        """
        try:
            async with self._db.connection() as conn:
                rows = await conn.fetch(query, assignment_id)
            return [self._build_history_from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list history for assignment {assignment_id}: {e}")
            raise DatabaseError(f"Failed to list assignment history: {e}")
