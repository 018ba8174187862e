"""Protocol interfaces for the employees feature."""

from abc import abstractmethod
from typing import Iterable, Optional, Protocol, Set, runtime_checkable

from .employee import Employee, EmployeeRecord, UserDetails


@runtime_checkable
class EmployeeRepository(Protocol):
    """Protocol for employee persistence."""

    @abstractmethod
    async def get_by_id(self, employee_id: int) -> Optional[Employee]:
        """Get employee by primary key, including deactivated ones."""
        ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[Employee]:
        """Get employee by directory username."""
        ...

    @abstractmethod
    async def create(self, employee: Employee) -> Employee:
        """Insert an employee and return it with its id."""
        ...

    @abstractmethod
    async def update(self, employee: Employee) -> Employee:
        """Persist changes to an existing employee."""
        ...

    @abstractmethod
    async def list_ids_existing(self, ids: Iterable[int]) -> Set[int]:
        """Return the subset of ids that exist."""
        ...


@runtime_checkable
class Authenticator(Protocol):
    """Directory authentication capability."""

    @abstractmethod
    async def authenticate(self, username: str, password: str) -> bool:
        """Bind against the directory with the given credentials."""
        ...

    @abstractmethod
    async def get_user_details(self, username: str) -> Optional[UserDetails]:
        """Look up directory attributes for a user."""
        ...


@runtime_checkable
class EmployeeSource(Protocol):
    """Source of truth for employee attributes (the HR API)."""

    @abstractmethod
    async def fetch(self, username: str) -> Optional[EmployeeRecord]:
        """Fetch an employee record, or None when the HR system has none."""
        ...
