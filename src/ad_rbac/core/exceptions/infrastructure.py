"""Infrastructure exceptions: storage, cache, configuration and HR API."""

from .base import AdRbacError


class ConfigurationError(AdRbacError):
    """Raised when there's a configuration issue."""
    pass


class DatabaseError(AdRbacError):
    """Raised when a storage operation fails."""
    pass


class CacheError(AdRbacError):
    """Raised when a cache backend read or write fails."""
    pass


class CacheInvalidationError(CacheError):
    """Raised when a cache entry could not be removed."""
    pass


class EmployeeSourceError(AdRbacError):
    """Raised when the HR API cannot be reached or returns garbage."""
    pass
