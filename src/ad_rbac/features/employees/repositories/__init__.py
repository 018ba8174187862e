"""Employee repositories."""

from .employee_repository import AsyncPGEmployeeRepository
from .memory_repository import InMemoryEmployeeRepository

__all__ = ["AsyncPGEmployeeRepository", "InMemoryEmployeeRepository"]
