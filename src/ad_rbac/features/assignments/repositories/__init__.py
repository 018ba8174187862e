"""Assignment repositories."""

from .assignment_repository import AsyncPGAssignmentHistoryRepository, AsyncPGAssignmentRepository
from .memory_repository import InMemoryAssignmentHistoryRepository, InMemoryAssignmentRepository

__all__ = [
    "AsyncPGAssignmentHistoryRepository",
    "AsyncPGAssignmentRepository",
    "InMemoryAssignmentHistoryRepository",
    "InMemoryAssignmentRepository",
]
