"""In-memory storage backend.

Tables are plain dicts keyed by primary key. ``transaction`` serialises
writers on the same lock keys with ``asyncio.Lock``. Writes made inside a
transaction are staged on it and only reach the tables when the outermost
block commits; other tasks keep seeing the committed rows until then, and a
failed block drops its staged writes.
"""

import asyncio
import copy
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, FrozenSet, Hashable, List, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()
_DELETED = object()


class MemoryTransaction:
    """Staged writes of one open transaction."""

    def __init__(self, held_keys: FrozenSet[int], parent: Optional["MemoryTransaction"] = None):
        self.held_keys = held_keys
        self.parent = parent
        self._staged: Dict[Tuple[str, Hashable], Any] = {}

    def stage(self, table: str, key: Hashable, row: Any) -> None:
        self._staged[(table, key)] = row

    def lookup(self, table: str, key: Hashable) -> Any:
        """Staged row, ``_DELETED``, or ``_MISSING`` when nothing is staged."""
        tx: Optional[MemoryTransaction] = self
        while tx is not None:
            if (table, key) in tx._staged:
                return tx._staged[(table, key)]
            tx = tx.parent
        return _MISSING

    def overlay(self, table: str, rows: Dict[Hashable, Any]) -> Dict[Hashable, Any]:
        chain: List[MemoryTransaction] = []
        tx: Optional[MemoryTransaction] = self
        while tx is not None:
            chain.append(tx)
            tx = tx.parent
        merged = dict(rows)
        for tx in reversed(chain):
            for (staged_table, key), row in tx._staged.items():
                if staged_table != table:
                    continue
                if row is _DELETED:
                    merged.pop(key, None)
                else:
                    merged[key] = row
        return merged

    def merge_into(self, parent: "MemoryTransaction") -> None:
        parent._staged.update(self._staged)

    def __len__(self) -> int:
        return len(self._staged)


class InMemoryDatabase:
    """Dict-backed tables implementing the TransactionManager protocol."""

    def __init__(self):
        self._tables: Dict[str, Dict[Hashable, Any]] = defaultdict(dict)
        self._sequences: Dict[str, int] = defaultdict(int)
        self._locks: Dict[int, asyncio.Lock] = {}
        self._current: ContextVar[Optional[MemoryTransaction]] = ContextVar(
            f"ad_rbac_memory_tx_{id(self)}", default=None
        )

    # Table access

    def rows(self, table: str) -> List[Any]:
        """Copies of every visible row in ``table`` in insertion order."""
        rows = self._tables[table]
        tx = self._current.get()
        if tx is not None:
            rows = tx.overlay(table, rows)
        return [copy.deepcopy(row) for row in rows.values()]

    def get(self, table: str, key: Hashable) -> Optional[Any]:
        row = self._visible(table, key)
        return copy.deepcopy(row) if row is not None else None

    def contains(self, table: str, key: Hashable) -> bool:
        return self._visible(table, key) is not None

    def next_id(self, table: str) -> int:
        # Sequences are not rolled back, like PostgreSQL serials.
        self._sequences[table] += 1
        return self._sequences[table]

    def put(self, table: str, key: Hashable, row: Any) -> None:
        """Insert or replace a row; staged when a transaction is open."""
        self._write(table, key, copy.deepcopy(row))

    def remove(self, table: str, key: Hashable) -> bool:
        if not self.contains(table, key):
            return False
        self._write(table, key, _DELETED)
        return True

    def _visible(self, table: str, key: Hashable) -> Optional[Any]:
        tx = self._current.get()
        if tx is not None:
            staged = tx.lookup(table, key)
            if staged is _DELETED:
                return None
            if staged is not _MISSING:
                return staged
        return self._tables[table].get(key)

    def _write(self, table: str, key: Hashable, row: Any) -> None:
        tx = self._current.get()
        if tx is not None:
            tx.stage(table, key, row)
        elif row is _DELETED:
            self._tables[table].pop(key, None)
        else:
            self._tables[table][key] = row

    def _apply(self, tx: MemoryTransaction) -> None:
        for (table, key), row in tx._staged.items():
            if row is _DELETED:
                self._tables[table].pop(key, None)
            else:
                self._tables[table][key] = row

    # Transactions

    def _lock_for(self, key: int) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def transaction(self, *lock_keys: int) -> AsyncIterator[MemoryTransaction]:
        """Open a transaction; nested calls commit into the outer one."""
        parent = self._current.get()
        held = parent.held_keys if parent is not None else frozenset()
        wanted = sorted(set(lock_keys) - held)

        acquired: List[asyncio.Lock] = []
        try:
            for key in wanted:
                lock = self._lock_for(key)
                await lock.acquire()
                acquired.append(lock)

            tx = MemoryTransaction(held | frozenset(wanted), parent=parent)
            token = self._current.set(tx)
            try:
                yield tx
            except BaseException:
                logger.debug(f"Discarding {len(tx)} staged writes")
                raise
            else:
                if parent is not None:
                    tx.merge_into(parent)
                else:
                    self._apply(tx)
            finally:
                self._current.reset(token)
        finally:
            for lock in reversed(acquired):
                lock.release()
