"""Value objects."""

from .assignable import AssignableRef, parse_assignable_type

__all__ = ["AssignableRef", "parse_assignable_type"]
