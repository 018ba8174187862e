"""Memory permission cache adapter."""

import logging
import time
from dataclasses import dataclass
from itertools import count
from typing import Callable, Dict, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class MemoryCacheEntry:
    """Memory cache entry with expiry."""
    slugs: FrozenSet[str]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryPermissionCache:
    """In-process implementation of PermissionCache protocol.

    Versions come from one process-wide counter. Once more than
    ``max_tracked_versions`` employees have been invalidated the table is
    dropped and untracked employees report the counter value at that point,
    so no version read before the prune can match again.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_tracked_versions: int = 10_000):
        self._entries: Dict[int, MemoryCacheEntry] = {}
        self._versions: Dict[int, int] = {}
        self._counter = count(1)
        self._floor = 0
        self._max_tracked_versions = max_tracked_versions
        self._clock = clock

    async def get(self, employee_id: int) -> Optional[FrozenSet[str]]:
        entry = self._entries.get(employee_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(employee_id, None)
            return None
        return entry.slugs

    async def version(self, employee_id: int) -> int:
        return self._versions.get(employee_id, self._floor)

    async def set(
        self, employee_id: int, slugs: Iterable[str], ttl: int, version: Optional[int] = None
    ) -> bool:
        if version is not None and await self.version(employee_id) != version:
            return False
        self._entries[employee_id] = MemoryCacheEntry(
            slugs=frozenset(slugs), expires_at=self._clock() + ttl
        )
        return True

    async def invalidate(self, employee_id: int) -> None:
        await self.invalidate_many([employee_id])

    async def invalidate_many(self, employee_ids: Iterable[int]) -> None:
        ids = list(employee_ids)
        if len(self._versions) + len(ids) > self._max_tracked_versions:
            self._floor = next(self._counter)
            self._versions.clear()
            logger.debug(f"Pruned permission cache versions at {self._floor}")
        for employee_id in ids:
            self._versions[employee_id] = next(self._counter)
            self._entries.pop(employee_id, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
