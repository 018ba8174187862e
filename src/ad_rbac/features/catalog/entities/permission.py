"""Permission domain entity.

A permission is identified by its ``(module, action)`` pair; its slug is
derived from that pair and never set independently.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ....utils.slugs import permission_slug, snake_case


@dataclass
class Permission:
    """A unit of access control."""

    id: Optional[int]
    module: str
    action: str
    name: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    is_system: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.module or not self.module.strip():
            raise ValueError("Permission module cannot be empty")
        if not self.action or not self.action.strip():
            raise ValueError("Permission action cannot be empty")
        self.module = snake_case(self.module)
        self.action = self.action.strip().lower()
        if not self.name:
            self.name = f"{self.action.capitalize()} {self.module.replace('_', ' ').title()}"

    @property
    def slug(self) -> str:
        return permission_slug(self.module, self.action)

    @property
    def key(self) -> tuple:
        return (self.module, self.action)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
