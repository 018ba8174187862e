"""Base exceptions for ad-rbac.

All exceptions inherit from AdRbacError and carry an error code and a
details mapping so callers can turn them into API responses.
"""

from typing import Any, Dict, Optional


class AdRbacError(Exception):
    """Base exception for all ad-rbac errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Render as the standard error envelope."""
        return create_error_response(self)


def create_error_response(exception: AdRbacError) -> Dict[str, Any]:
    """Create standardized error response from exception.

    Args:
        exception: The ad-rbac exception

    Returns:
        Error response dictionary
    """
    return {
        "error": {
            "code": exception.error_code,
            "message": exception.message,
            "details": exception.details,
            "type": exception.__class__.__name__,
        }
    }
