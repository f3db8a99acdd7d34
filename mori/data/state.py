"""
Mori — Session State

Everything the dispatcher learns from the server, split into subsystems that
each carry their own lock:

- AuthState: server endpoint + login credentials (redirect target)
- PhaseState: connection lifecycle
- WorldState: current world (tiles, dropped items)
- PlayerRegistry: other players in the world, keyed by net id
- Inventory: gems, capacity, item counts
- Runtime: own net/user id, redirect flag, ping, bounded log buffer
- PositionState: own position in pixels
- ItemStore: the active item database

Writers take the blocking lock. Observers that must never stall (the status
dashboard, the HTTP front end) use the try_* readers, which raise
ResourceUnavailable instead of waiting. No method here takes two locks.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterator

from mori.data.items import ItemDatabase
from mori.errors import ResourceUnavailable

EXIT = "EXIT"  # world name meaning "not in a world"
TILE_SIZE = 32
LOG_BUFFER_SIZE = 200


@contextmanager
def try_locked(lock: threading.Lock, resource: str) -> Iterator[None]:
    """Acquire without waiting, or raise ResourceUnavailable."""
    if not lock.acquire(blocking=False):
        raise ResourceUnavailable(resource)
    try:
        yield
    finally:
        lock.release()


# ---- Connection phase ----

class ConnectionPhase(Enum):
    FETCHING_SERVER_DATA = "FetchingServerData"
    CONNECTING_TO_SERVER = "ConnectingToServer"
    IN_GAME = "InGame"
    IN_WORLD = "InWorld"


class PhaseState:
    def __init__(self, phase: ConnectionPhase = ConnectionPhase.FETCHING_SERVER_DATA):
        self._phase = phase
        self._lock = threading.Lock()

    def get(self) -> ConnectionPhase:
        with self._lock:
            return self._phase

    def set(self, phase: ConnectionPhase) -> None:
        with self._lock:
            self._phase = phase

    def try_get(self) -> ConnectionPhase:
        with try_locked(self._lock, "phase"):
            return self._phase


# ---- Auth ----

@dataclass
class ServerData:
    host: str = ""
    port: int = 0


@dataclass
class LoginInfo:
    token: int = 0
    user: int = 0
    door_id: str = ""
    uuid: str = ""
    aat: int = 0
    display_name: str = ""


class AuthState:
    def __init__(self):
        self.server = ServerData()
        self.login = LoginInfo()
        self._lock = threading.Lock()

    def set_redirect(self, host: str, port: int, token: int, user: int,
                     door_id: str, uuid: str, aat: int) -> None:
        """Store a redirect target in one step so readers never see half of it."""
        with self._lock:
            self.server.host = host
            self.server.port = port
            self.login.token = token
            self.login.user = user
            self.login.door_id = door_id
            self.login.uuid = uuid
            self.login.aat = aat

    def set_display_name(self, name: str) -> None:
        with self._lock:
            self.login.display_name = name

    def snapshot(self) -> tuple[ServerData, LoginInfo]:
        with self._lock:
            return replace(self.server), replace(self.login)

    def try_snapshot(self) -> tuple[ServerData, LoginInfo]:
        with try_locked(self._lock, "auth"):
            return replace(self.server), replace(self.login)


# ---- World ----

class TileType(Enum):
    BASIC = "basic"
    SEED = "seed"
    LOCK = "lock"
    DOOR = "door"
    OTHER = "other"


@dataclass(frozen=True)
class Tile:
    x: int
    y: int
    foreground: int = 0
    background: int = 0
    type: TileType = TileType.BASIC

    @property
    def has_lock(self) -> bool:
        return self.type is TileType.LOCK

    @property
    def is_seed(self) -> bool:
        return self.type is TileType.SEED


@dataclass(frozen=True)
class DroppedItem:
    uid: int
    id: int
    x: float
    y: float
    count: int = 1


@dataclass
class World:
    """A world as handed over by the tile provider. Tiles are row-major."""
    name: str = EXIT
    width: int = 0
    height: int = 0
    tiles: list[Tile] = field(default_factory=list)
    dropped: list[DroppedItem] = field(default_factory=list)
    owner_id: int = 0
    access: list[int] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.name != EXIT

    def get_tile(self, x: int, y: int) -> Tile | None:
        if not (0 <= x < self.width and 0 <= y < self.height):
            return None
        idx = y * self.width + x
        if idx >= len(self.tiles):
            return None
        return self.tiles[idx]

    def copy(self) -> World:
        return World(self.name, self.width, self.height, list(self.tiles), list(self.dropped),
                     self.owner_id, list(self.access))

    def can_build(self, user_id: int) -> bool:
        """Whether `user_id` owns the world lock or is on its access list."""
        if not user_id or not self.owner_id:
            return False
        return user_id == self.owner_id or user_id in self.access


class WorldState:
    def __init__(self):
        self._world = World()
        self._lock = threading.Lock()

    def replace(self, world: World) -> None:
        with self._lock:
            self._world = world.copy()

    def reset(self) -> None:
        with self._lock:
            self._world = World()

    def snapshot(self) -> World:
        with self._lock:
            return self._world.copy()

    def try_snapshot(self) -> World:
        with try_locked(self._lock, "world"):
            return self._world.copy()


# ---- Players ----

@dataclass
class Player:
    """Another player in the current world, built from an OnSpawn block."""
    name: str
    net_id: int
    user_id: int = 0
    country: str = ""
    position: tuple[float, float] = (0.0, 0.0)
    invisible: bool = False
    mod_state: int = 0
    avatar: str = ""
    online_id: str = ""
    eid: str = ""
    ip: str = ""
    collision_rect: str = ""
    title_icon: str = ""
    spawn: str = ""

    @property
    def is_moderator(self) -> bool:
        return self.mod_state == 1

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "netId": self.net_id,
            "userId": self.user_id,
            "country": self.country,
            "pos": {"x": self.position[0], "y": self.position[1]},
            "invisible": self.invisible,
            "isMod": self.is_moderator,
        }


class PlayerRegistry:
    def __init__(self):
        self._players: dict[int, Player] = {}
        self._lock = threading.Lock()

    def insert(self, player: Player) -> None:
        """Insert or overwrite by net id."""
        with self._lock:
            self._players[player.net_id] = player

    def remove(self, net_id: int) -> Player | None:
        with self._lock:
            return self._players.pop(net_id, None)

    def clear(self) -> None:
        with self._lock:
            self._players.clear()

    def get(self, net_id: int) -> Player | None:
        with self._lock:
            p = self._players.get(net_id)
            return replace(p) if p else None

    def snapshot(self) -> list[Player]:
        with self._lock:
            return [replace(p) for p in self._players.values()]

    def try_snapshot(self) -> list[Player]:
        with try_locked(self._lock, "players"):
            return [replace(p) for p in self._players.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._players)


# ---- Inventory ----

@dataclass(frozen=True)
class InventorySnapshot:
    gems: int = 0
    size: int = 0
    items: dict[int, int] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.items)

    def item_count(self, item_id: int) -> int:
        return self.items.get(item_id, 0)

    def has_item(self, item_id: int, minimum: int = 1) -> bool:
        return self.item_count(item_id) >= minimum

    def is_full(self) -> bool:
        return self.count >= self.size


class Inventory:
    def __init__(self, size: int = 16):
        self.gems = 0
        self.size = size
        self.items: dict[int, int] = {}
        self._lock = threading.Lock()

    def add_gems(self, amount: int) -> int:
        with self._lock:
            self.gems += amount
            return self.gems

    def set_item(self, item_id: int, amount: int) -> None:
        with self._lock:
            if amount <= 0:
                self.items.pop(item_id, None)
            else:
                self.items[item_id] = amount

    def snapshot(self) -> InventorySnapshot:
        with self._lock:
            return InventorySnapshot(self.gems, self.size, dict(self.items))

    def try_snapshot(self) -> InventorySnapshot:
        with try_locked(self._lock, "inventory"):
            return InventorySnapshot(self.gems, self.size, dict(self.items))


# ---- Runtime ----

@dataclass(frozen=True)
class RuntimeSnapshot:
    net_id: int = 0
    user_id: int = 0
    redirecting: bool = False
    ping: int = 0
    logs: tuple[str, ...] = ()


class Runtime:
    def __init__(self, log_size: int = LOG_BUFFER_SIZE):
        self.net_id = 0
        self.user_id = 0
        self.redirecting = False
        self.ping = 0
        self.logs: deque[str] = deque(maxlen=log_size)
        self._lock = threading.Lock()

    def set_self(self, net_id: int, user_id: int) -> None:
        with self._lock:
            self.net_id = net_id
            self.user_id = user_id

    def set_redirecting(self, flag: bool) -> None:
        with self._lock:
            self.redirecting = flag

    def set_ping(self, ping: int) -> None:
        with self._lock:
            self.ping = ping

    def push_log(self, message: str) -> None:
        stamp = time.strftime("%H:%M:%S")
        with self._lock:
            self.logs.append(f"[{stamp}] {message}")

    def snapshot(self) -> RuntimeSnapshot:
        with self._lock:
            return RuntimeSnapshot(self.net_id, self.user_id, self.redirecting,
                                   self.ping, tuple(self.logs))

    def try_snapshot(self) -> RuntimeSnapshot:
        with try_locked(self._lock, "runtime"):
            return RuntimeSnapshot(self.net_id, self.user_id, self.redirecting,
                                   self.ping, tuple(self.logs))


# ---- Position ----

def to_tile(coord: float) -> int:
    return math.floor(coord / TILE_SIZE)


class PositionState:
    def __init__(self):
        self._x = 0.0
        self._y = 0.0
        self._lock = threading.Lock()

    def set(self, x: float, y: float) -> None:
        with self._lock:
            self._x, self._y = x, y

    def get(self) -> tuple[float, float]:
        with self._lock:
            return self._x, self._y

    def try_get(self) -> tuple[float, float]:
        with try_locked(self._lock, "position"):
            return self._x, self._y

    def tile(self) -> tuple[int, int]:
        x, y = self.get()
        return to_tile(x), to_tile(y)


# ---- Item database ----

class ItemStore:
    def __init__(self, db: ItemDatabase | None = None):
        self._db = db or ItemDatabase()
        self._lock = threading.Lock()

    def swap(self, db: ItemDatabase) -> None:
        with self._lock:
            self._db = db

    def get(self) -> ItemDatabase:
        with self._lock:
            return self._db

    def try_get(self) -> ItemDatabase:
        with try_locked(self._lock, "items"):
            return self._db


# ---- Aggregate ----

class SessionState:
    """All subsystems of one bot session."""

    def __init__(self, inventory_size: int = 16):
        self.auth = AuthState()
        self.phase = PhaseState()
        self.world = WorldState()
        self.players = PlayerRegistry()
        self.inventory = Inventory(inventory_size)
        self.runtime = Runtime()
        self.position = PositionState()
        self.items = ItemStore()
