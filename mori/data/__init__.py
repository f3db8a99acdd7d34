from .items import ItemDatabase, ItemInfo, load_json
from .state import (
    EXIT, ConnectionPhase, DroppedItem, Inventory, InventorySnapshot, Player,
    PlayerRegistry, Runtime, SessionState, Tile, TileType, World,
)

__all__ = [
    "ItemDatabase", "ItemInfo", "load_json",
    "EXIT", "ConnectionPhase", "DroppedItem", "Inventory", "InventorySnapshot",
    "Player", "PlayerRegistry", "Runtime", "SessionState", "Tile", "TileType", "World",
]
