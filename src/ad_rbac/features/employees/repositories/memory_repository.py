"""In-memory employee repository."""

from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional, Set

from ....core.exceptions import DatabaseError
from ....database.memory import InMemoryDatabase
from ....utils.datetime import utc_now
from ..entities import Employee

TABLE = "employees"


class InMemoryEmployeeRepository:
    """In-memory implementation of EmployeeRepository protocol."""

    def __init__(self, database: InMemoryDatabase, clock: Callable[[], datetime] = utc_now):
        self._db = database
        self._clock = clock

    async def get_by_id(self, employee_id: int) -> Optional[Employee]:
        return self._db.get(TABLE, employee_id)

    async def get_by_username(self, username: str) -> Optional[Employee]:
        wanted = username.strip().lower()
        for employee in self._db.rows(TABLE):
            if employee.username.lower() == wanted:
                return employee
        return None

    async def create(self, employee: Employee) -> Employee:
        if await self.get_by_username(employee.username) is not None:
            raise DatabaseError(f"Employee '{employee.username}' already exists")
        now = self._clock()
        created = replace(
            employee,
            id=self._db.next_id(TABLE),
            created_at=employee.created_at or now,
            updated_at=now,
        )
        self._db.put(TABLE, created.id, created)
        return created

    async def update(self, employee: Employee) -> Employee:
        if employee.id is None or not self._db.contains(TABLE, employee.id):
            raise DatabaseError(f"Employee {employee.id} does not exist")
        updated = replace(employee, updated_at=self._clock())
        self._db.put(TABLE, updated.id, updated)
        return updated

    async def list_ids_existing(self, ids: Iterable[int]) -> Set[int]:
        return {i for i in ids if self._db.contains(TABLE, i)}
