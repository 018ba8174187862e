"""Utility helpers."""

from .datetime import days_from, ensure_utc, is_expired, utc_now
from .locks import advisory_lock_key
from .slugs import permission_slug, slugify, snake_case

__all__ = [
    "advisory_lock_key",
    "days_from",
    "ensure_utc",
    "is_expired",
    "utc_now",
    "permission_slug",
    "slugify",
    "snake_case",
]
