"""Plain data types shared across the crawler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

Region = str
ItemId = int
ItemRecord = dict[str, Any]


@dataclass(frozen=True)
class Genre:
    """A catalog genre; ids are shared by every region."""

    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}
