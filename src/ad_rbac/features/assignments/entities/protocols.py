"""Protocol interfaces for assignment persistence.

Every query that talks about "active" assignments takes ``now`` so the
caller decides the instant against which expiry is judged.
"""

from abc import abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple, runtime_checkable

from ....config.constants import AssignableType
from ....core.value_objects import AssignableRef
from .assignment import Assignment
from .history import AssignmentHistory


@runtime_checkable
class AssignmentRepository(Protocol):
    """Protocol for the assignment store."""

    @abstractmethod
    async def create(self, assignment: Assignment, now: datetime) -> Assignment:
        """Insert an active assignment.

        Raises DuplicateActiveAssignment when an active, unexpired row
        already exists for the same employee and entity.
        """
        ...

    @abstractmethod
    async def get(self, assignment_id: int) -> Optional[Assignment]:
        ...

    @abstractmethod
    async def save(self, assignment: Assignment, now: datetime) -> Assignment:
        """Persist ``is_active``, ``expires_at`` and reason changes, stamped at ``now``."""
        ...

    @abstractmethod
    async def find_active(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> Optional[Assignment]:
        """The active, unexpired row for the pair, if any."""
        ...

    @abstractmethod
    async def deactivate_expired(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> List[Assignment]:
        """Flip active-but-expired rows for the pair to inactive and return them."""
        ...

    @abstractmethod
    async def list_for_employee(
        self, employee_id: int, now: datetime, include_inactive: bool = False
    ) -> List[Assignment]:
        ...

    @abstractmethod
    async def active_ids(
        self, employee_id: int, assignable_type: AssignableType, now: datetime
    ) -> Set[int]:
        """Ids of entities of one type the employee currently holds."""
        ...

    @abstractmethod
    async def holders(self, ref: AssignableRef, now: datetime) -> Set[int]:
        """Employees currently holding an entity."""
        ...

    @abstractmethod
    async def holders_of_any(
        self, assignable_type: AssignableType, ids: Iterable[int], now: datetime
    ) -> Set[int]:
        """Employees currently holding any of the entities."""
        ...

    @abstractmethod
    async def list_expired_active(self, now: datetime) -> List[Assignment]:
        """Rows still flagged active whose expiry has passed."""
        ...

    @abstractmethod
    async def list_expiring(self, now: datetime, until: datetime) -> List[Assignment]:
        """Active rows expiring within ``[now, until]``, soonest first."""
        ...

    @abstractmethod
    async def counts(self, now: datetime) -> Tuple[int, int, int, int, Dict[str, int]]:
        """``(total, active, expired, inactive, by_type)`` over all rows."""
        ...


@runtime_checkable
class AssignmentHistoryRepository(Protocol):
    """Protocol for the append-only history log."""

    @abstractmethod
    async def append(self, entry: AssignmentHistory) -> AssignmentHistory:
        ...

    @abstractmethod
    async def list_for_assignment(self, assignment_id: int) -> List[AssignmentHistory]:
        """History entries oldest first."""
        ...
