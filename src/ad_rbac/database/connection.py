"""asyncpg connection pool and transaction boundary.

Repositories never hold a connection of their own: they ask the
``Database`` for one and transparently join the transaction that the
calling service opened in the same task.
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from importlib import resources
from typing import AsyncIterator, Optional

import asyncpg

from ..core.exceptions import DatabaseError

logger = logging.getLogger(__name__)

_current_connection: ContextVar[Optional[asyncpg.Connection]] = ContextVar(
    "ad_rbac_current_connection", default=None
)


class Database:
    """asyncpg pool wrapper implementing the TransactionManager protocol."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
            logger.info(f"Created connection pool: min={self._min_size}, max={self._max_size}")
        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise DatabaseError(f"Failed to create connection pool: {e}")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Closed connection pool")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise DatabaseError("Database is not connected; call connect() first")
        return self._pool

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield the task's transaction connection, or a pooled one."""
        current = _current_connection.get()
        if current is not None:
            yield current
            return

        async with self._require_pool().acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self, *lock_keys: int) -> AsyncIterator[asyncpg.Connection]:
        """Run the block in one transaction holding ``pg_advisory_xact_lock`` keys.

        Keys are taken in sorted order so two transactions asking for the
        same keys cannot deadlock. A nested call reuses the outer
        connection inside a savepoint.
        """
        current = _current_connection.get()
        if current is not None:
            async with current.transaction():
                await self._lock(current, lock_keys)
                yield current
            return

        async with self._require_pool().acquire() as conn:
            token = _current_connection.set(conn)
            try:
                async with conn.transaction():
                    await self._lock(conn, lock_keys)
                    yield conn
            finally:
                _current_connection.reset(token)

    async def _lock(self, conn: asyncpg.Connection, lock_keys) -> None:
        for key in sorted(set(lock_keys)):
            await conn.execute("SELECT pg_advisory_xact_lock($1)", key)

    async def apply_schema(self) -> None:
        """Create tables and indexes from the bundled ``schema.sql``."""
        ddl = resources.files("ad_rbac.database").joinpath("schema.sql").read_text()
        try:
            async with self.connection() as conn:
                await conn.execute(ddl)
            logger.info("Applied ad-rbac schema")
        except Exception as e:
            logger.error(f"Failed to apply schema: {e}")
            raise DatabaseError(f"Failed to apply schema: {e}")
