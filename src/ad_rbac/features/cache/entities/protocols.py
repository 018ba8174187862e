"""Protocol for the resolved-permission cache.

The cache is keyed by employee id and stores the employee's complete
effective permission set. Each employee also has an invalidation version,
bumped by every invalidation and shared by every process using the same
backend. A reader takes the version before it resolves and passes it to
``set``; the write is dropped if an invalidation happened in between.

Implementations raise ``CacheError`` (or ``CacheInvalidationError`` from
the invalidation methods) when the backend fails; the resolver decides how
to degrade.
"""

from abc import abstractmethod
from typing import FrozenSet, Iterable, Optional, Protocol, runtime_checkable


@runtime_checkable
class PermissionCache(Protocol):
    """Per-employee store of effective permission slugs."""

    @abstractmethod
    async def get(self, employee_id: int) -> Optional[FrozenSet[str]]:
        """Cached slugs, or None on a miss."""
        ...

    @abstractmethod
    async def version(self, employee_id: int) -> int:
        """Current invalidation version of the employee's entry."""
        ...

    @abstractmethod
    async def set(
        self, employee_id: int, slugs: Iterable[str], ttl: int, version: Optional[int] = None
    ) -> bool:
        """Store slugs for ``ttl`` seconds.

        With ``version``, store only if no invalidation happened since that
        version was read. Returns whether the entry was written.
        """
        ...

    @abstractmethod
    async def invalidate(self, employee_id: int) -> None:
        """Bump the employee's version and remove the entry."""
        ...

    @abstractmethod
    async def invalidate_many(self, employee_ids: Iterable[int]) -> None:
        """Bump versions and remove several entries."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry owned by this cache."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...
