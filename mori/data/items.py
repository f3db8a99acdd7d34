"""
Mori — Item Database

Read-only item records keyed by id. Parsing the game's binary item file is
the loader's business; the session only needs lookups, so any callable
`loader(path) -> ItemDatabase` can be plugged in. The bundled loader reads a
JSON export:

    {"version": 19, "items": {"2": {"name": "Dirt", "rarity": 1,
                                   "collision_type": 1, "action_type": 17}}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

# collision types that block movement
SOLID_COLLISION_TYPES = frozenset({1, 6})


@dataclass(frozen=True)
class ItemInfo:
    id: int
    name: str
    rarity: int = 0
    collision_type: int = 0
    action_type: int = 0

    @property
    def is_solid(self) -> bool:
        return self.collision_type in SOLID_COLLISION_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "rarity": self.rarity,
            "collisionType": self.collision_type,
            "actionType": self.action_type,
        }


@dataclass
class ItemDatabase:
    items: dict[int, ItemInfo] = field(default_factory=dict)
    version: int = 0

    @property
    def item_count(self) -> int:
        return len(self.items)

    def get_item(self, item_id: int) -> ItemInfo | None:
        return self.items.get(item_id)

    def find_by_name(self, name: str) -> ItemInfo | None:
        """Exact (case-sensitive) name match. Linear scan."""
        for item in self.items.values():
            if item.name == name:
                return item
        return None

    def collision_type(self, item_id: int) -> int:
        item = self.items.get(item_id)
        return item.collision_type if item else 0

    def item_name(self, item_id: int) -> str:
        """'Name (ID)' if known, or just the ID."""
        item = self.items.get(item_id)
        if item:
            return f"{item.name} ({item_id})"
        return str(item_id)


ItemLoader = Callable[[Path], ItemDatabase]


def load_json(path: str | Path) -> ItemDatabase:
    """Load an item export. Raises OSError / ValueError on bad files."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object, got {type(data).__name__}")
    raw = data.get("items", {})
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: 'items' must be an object")
    items: dict[int, ItemInfo] = {}
    for key, entry in raw.items():
        item_id = int(key)
        if isinstance(entry, str):
            entry = {"name": entry}
        elif not isinstance(entry, dict):
            raise ValueError(f"{path}: item {key} is {type(entry).__name__}, not an object")
        try:
            items[item_id] = ItemInfo(
                id=item_id,
                name=str(entry.get("name", "")),
                rarity=int(entry.get("rarity", 0)),
                collision_type=int(entry.get("collision_type", 0)),
                action_type=int(entry.get("action_type", 0)),
            )
        except TypeError as e:
            raise ValueError(f"{path}: item {key}: {e}") from e
    try:
        version = int(data.get("version", 0))
    except TypeError as e:
        raise ValueError(f"{path}: bad version: {e}") from e
    return ItemDatabase(items=items, version=version)
