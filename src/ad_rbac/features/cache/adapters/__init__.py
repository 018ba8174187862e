"""Permission cache adapters."""

from .memory_adapter import MemoryPermissionCache
from .redis_adapter import RedisPermissionCache

__all__ = ["MemoryPermissionCache", "RedisPermissionCache"]
