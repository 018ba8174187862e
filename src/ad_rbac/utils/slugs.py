"""Slug helpers for catalog entities."""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def slugify(value: str) -> str:
    """Lower-case and collapse non-alphanumerics into single dashes.

    >>> slugify("HR Managers")
    'hr-managers'
    """
    return _NON_ALNUM.sub("-", value.strip().lower()).strip("-")


def snake_case(value: str) -> str:
    """Convert ``LeaveRequest`` or ``leave-request`` to ``leave_request``."""
    value = _CAMEL_BOUNDARY.sub("_", value.strip())
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def permission_slug(module: str, action: str) -> str:
    """Slug of a permission: ``{snake(module)}.{action}``."""
    return f"{snake_case(module)}.{action.strip().lower()}"
