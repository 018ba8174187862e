"""Outcome of a permission scan over one module."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class ScanResult:
    module: str
    created: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.removed)

    def to_dict(self) -> dict:
        return {
            "module": self.module,
            "created": list(self.created),
            "removed": list(self.removed),
            "kept": list(self.kept),
            "unchanged": list(self.unchanged),
        }
