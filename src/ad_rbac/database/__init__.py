"""Storage backends: asyncpg pool and in-memory tables."""

from .connection import Database
from .memory import InMemoryDatabase, MemoryTransaction
from .protocols import TransactionManager

__all__ = ["Database", "InMemoryDatabase", "MemoryTransaction", "TransactionManager"]
