"""In-memory assignment and history repositories."""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ....config.constants import AssignableType
from ....core.exceptions import DatabaseError, DuplicateActiveAssignment
from ....core.value_objects import AssignableRef
from ....database.memory import InMemoryDatabase
from ....utils.datetime import utc_now
from ..entities import Assignment, AssignmentHistory

ASSIGNMENTS = "assignments"
HISTORY = "assignment_history"


class InMemoryAssignmentRepository:
    """In-memory implementation of AssignmentRepository protocol."""

    def __init__(self, database: InMemoryDatabase):
        self._db = database

    def _rows(self) -> List[Assignment]:
        return self._db.rows(ASSIGNMENTS)

    def _for_pair(self, employee_id: int, ref: AssignableRef) -> List[Assignment]:
        return [
            a
            for a in self._rows()
            if a.employee_id == employee_id
            and a.assignable_type == ref.type
            and a.assignable_id == ref.id
        ]

    async def create(self, assignment: Assignment, now: datetime) -> Assignment:
        # Mirrors the partial unique index: any row still flagged active blocks the insert.
        pair = self._for_pair(assignment.employee_id, assignment.ref)
        if any(a.is_active for a in pair):
            raise DuplicateActiveAssignment(
                assignment.employee_id, assignment.assignable_type.value, assignment.assignable_id
            )
        created = replace(
            assignment,
            id=self._db.next_id(ASSIGNMENTS),
            is_active=True,
            assigned_at=assignment.assigned_at or now,
            created_at=now,
            updated_at=now,
        )
        self._db.put(ASSIGNMENTS, created.id, created)
        return created

    async def get(self, assignment_id: int) -> Optional[Assignment]:
        return self._db.get(ASSIGNMENTS, assignment_id)

    async def save(self, assignment: Assignment, now: datetime) -> Assignment:
        if assignment.id is None or not self._db.contains(ASSIGNMENTS, assignment.id):
            raise DatabaseError(f"Assignment {assignment.id} does not exist")
        saved = replace(assignment, updated_at=now)
        self._db.put(ASSIGNMENTS, saved.id, saved)
        return saved

    async def find_active(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> Optional[Assignment]:
        return next((a for a in self._for_pair(employee_id, ref) if a.is_current(now)), None)

    async def deactivate_expired(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> List[Assignment]:
        flipped = []
        for a in self._for_pair(employee_id, ref):
            if a.is_active and a.is_expired(now):
                a.is_active = False
                a.updated_at = now
                self._db.put(ASSIGNMENTS, a.id, a)
                flipped.append(a)
        return flipped

    async def list_for_employee(
        self, employee_id: int, now: datetime, include_inactive: bool = False
    ) -> List[Assignment]:
        rows = [a for a in self._rows() if a.employee_id == employee_id]
        if not include_inactive:
            rows = [a for a in rows if a.is_current(now)]
        return sorted(rows, key=lambda a: a.id, reverse=True)

    async def active_ids(
        self, employee_id: int, assignable_type: AssignableType, now: datetime
    ) -> Set[int]:
        return {
            a.assignable_id
            for a in self._rows()
            if a.employee_id == employee_id
            and a.assignable_type == assignable_type
            and a.is_current(now)
        }

    async def holders(self, ref: AssignableRef, now: datetime) -> Set[int]:
        return await self.holders_of_any(ref.type, [ref.id], now)

    async def holders_of_any(
        self, assignable_type: AssignableType, ids: Iterable[int], now: datetime
    ) -> Set[int]:
        wanted = set(ids)
        return {
            a.employee_id
            for a in self._rows()
            if a.assignable_type == assignable_type
            and a.assignable_id in wanted
            and a.is_current(now)
        }

    async def list_expired_active(self, now: datetime) -> List[Assignment]:
        return [a for a in self._rows() if a.is_active and a.is_expired(now)]

    async def list_expiring(self, now: datetime, until: datetime) -> List[Assignment]:
        rows = [
            a
            for a in self._rows()
            if a.is_current(now) and a.expires_at is not None and a.expires_at <= until
        ]
        return sorted(rows, key=lambda a: (a.expires_at, a.id))

    async def counts(self, now: datetime) -> Tuple[int, int, int, int, Dict[str, int]]:
        rows = self._rows()
        by_type: Dict[str, int] = {}
        for a in rows:
            by_type[a.assignable_type.value] = by_type.get(a.assignable_type.value, 0) + 1
        active = sum(1 for a in rows if a.is_current(now))
        expired = sum(1 for a in rows if a.is_active and a.is_expired(now))
        inactive = sum(1 for a in rows if not a.is_active)
        return len(rows), active, expired, inactive, by_type


class InMemoryAssignmentHistoryRepository:
    """In-memory implementation of AssignmentHistoryRepository protocol."""

    def __init__(self, database: InMemoryDatabase):
        self._db = database

    async def append(self, entry: AssignmentHistory) -> AssignmentHistory:
        created = replace(
            entry,
            id=self._db.next_id(HISTORY),
            created_at=entry.created_at or utc_now(),
        )
        self._db.put(HISTORY, created.id, created)
        return created

    async def list_for_assignment(self, assignment_id: int) -> List[AssignmentHistory]:
        entries = [h for h in self._db.rows(HISTORY) if h.assignment_id == assignment_id]
        return sorted(entries, key=lambda h: h.id)
