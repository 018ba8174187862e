"""Group domain entity.

Groups form a forest through ``parent_id`` and own zero or more roles.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ....utils.slugs import slugify


@dataclass
class Group:
    """A named node in the group hierarchy."""

    id: Optional[int]
    name: str
    slug: str = ""
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_system: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Group name cannot be empty")
        if not self.slug:
            self.slug = slugify(self.name)
        if self.id is not None and self.parent_id == self.id:
            raise ValueError("Group cannot be its own parent")

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class GroupNode:
    """A group together with its nested children."""

    group: Group
    children: List["GroupNode"] = field(default_factory=list)

    def walk(self):
        """Yield this node's group and every descendant, depth first."""
        yield self.group
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict:
        return {
            "id": self.group.id,
            "name": self.group.name,
            "slug": self.group.slug,
            "children": [child.to_dict() for child in self.children],
        }
