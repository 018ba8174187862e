"""Role domain entity."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ....utils.slugs import slugify


@dataclass
class Role:
    """Named bundle of permissions, optionally owned by one group."""

    id: Optional[int]
    name: str
    slug: str = ""
    description: Optional[str] = None
    group_id: Optional[int] = None
    is_system: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Role name cannot be empty")
        if not self.slug:
            self.slug = slugify(self.name)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
