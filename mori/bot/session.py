"""
Mori — Bot Session

One logged-in client: state, callback bus, dispatcher, and the actions a
script (or any other caller) can drive.

    transport ──frames──► Bot.handle() ──► EventDispatcher ──► SessionState
                                                          └──► CallbackBus
    script / HTTP caller ──► Bot.punch() / walk() / ... ──► transport.send()

Actions are fire-and-forget. Repeated punch/place/path steps are spaced by
DelayConfig; callers outside the protocol thread should run multi-step work
(find_path, warp + wait) through spawn() so they are not blocked by it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from mori.bot.callbacks import CallbackBus
from mori.bot.config import Automation, BotConfig, DelayConfig
from mori.bot.dispatcher import EventDispatcher
from mori.bot.pathfinding import find_path, walkable_fn
from mori.data.items import ItemDatabase, ItemInfo, ItemLoader, load_json
from mori.data.state import (
    TILE_SIZE, ConnectionPhase, DroppedItem, SessionState, World, to_tile,
)
from mori.errors import ResourceUnavailable, SubscriberError
from mori.protocol.packets import (
    GamePacketType, NetMessage, OutboundPacket, PacketFlag,
    encode_game_message, encode_text_message,
)

log = logging.getLogger(__name__)

FIST_ID = 18
WRENCH_ID = 32

DialogHandler = Callable[["Bot"], None]


@dataclass
class ActionStats:
    """Counters for outbound activity."""
    punches: int = 0
    places: int = 0
    steps: int = 0
    items_collected: int = 0
    packets_sent: int = 0


def release_handle(handle: Any) -> None:
    """Bus release hook: free whatever the handle holds on to."""
    release = getattr(handle, "release", None)
    if release is not None:
        release()


class Bot:
    def __init__(
        self,
        transport,
        config: BotConfig | None = None,
        item_loader: ItemLoader = load_json,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or BotConfig()
        self.transport = transport
        self.item_loader = item_loader
        self.state = SessionState(self.config.inventory_size)
        self.bus: CallbackBus = CallbackBus(on_release=release_handle, on_error=self._on_subscriber_error)
        self.dispatcher = EventDispatcher(self)
        self.stats = ActionStats()
        self.sleep = sleep
        self._dialog_handler: DialogHandler | None = None
        self._dialog_lock = threading.Lock()
        self._config_lock = threading.Lock()
        self._last_action: dict[str, float] = {}
        self._threads: list[threading.Thread] = []

    # ---- Inbound ----

    def handle(self, data: bytes) -> str | None:
        """Feed one inbound frame from the transport."""
        return self.dispatcher.handle(data)

    def on_disconnected(self) -> bool:
        """Transport lost the peer. Reconnects to a pending redirect or, if enabled, the home server."""
        server, _ = self.state.auth.snapshot()
        redirecting = self.state.runtime.snapshot().redirecting
        if redirecting and server.host:
            log.info("following redirect to %s:%d", server.host, server.port)
            self.state.phase.set(ConnectionPhase.CONNECTING_TO_SERVER)
            self.transport.connect(server.host, server.port)
            return True
        with self._config_lock:
            auto = self.config.automation.auto_reconnect
        if auto:
            home = self.config.server
            log.info("reconnecting to %s:%d", home.server_ip, home.server_port)
            self.state.phase.set(ConnectionPhase.FETCHING_SERVER_DATA)
            self.transport.connect(home.server_ip, home.server_port)
            return True
        log.info("disconnected, auto-reconnect off")
        return False

    def enter_world(self, world: World) -> None:
        """Called by the world-tile provider once a world is fully loaded."""
        self.state.world.replace(world)
        self.state.players.clear()
        self.state.phase.set(ConnectionPhase.IN_WORLD)
        log.info("entered world %s (%dx%d)", world.name, world.width, world.height)

    def _on_subscriber_error(self, err: SubscriberError) -> None:
        self.state.runtime.push_log(f"[Lua] Error in '{err.event}' callback: {err.cause}")

    # ---- Dialog slot ----

    def set_dialog_handler(self, handler: DialogHandler | None) -> None:
        """Arm the single pending dialog handler (replaces any previous one)."""
        with self._dialog_lock:
            self._dialog_handler = handler

    def take_dialog_handler(self) -> DialogHandler | None:
        with self._dialog_lock:
            handler, self._dialog_handler = self._dialog_handler, None
            return handler

    # ---- Raw I/O ----

    def send_text(self, msg_type: NetMessage | int, text: str) -> None:
        self.transport.send(encode_text_message(msg_type, text), True)
        self.stats.packets_sent += 1

    def send_packet(self, pkt: OutboundPacket, reliable: bool = True, extended: bytes = b"") -> None:
        self.transport.send(encode_game_message(pkt, extended), reliable)
        self.stats.packets_sent += 1

    def _throttle(self, kind: str, delay_ms: int) -> None:
        """Sleep until `delay_ms` has passed since the last `kind` action."""
        now = time.monotonic()
        last = self._last_action.get(kind)
        if last is not None:
            remaining = delay_ms / 1000 - (now - last)
            if remaining > 0:
                self.sleep(remaining)
        self._last_action[kind] = time.monotonic()

    # ---- Actions ----

    def say(self, message: str) -> None:
        self.send_text(NetMessage.GENERIC_TEXT, f"action|input\n|text|{message}")

    def warp(self, world_name: str) -> None:
        log.info("warp → %s", world_name)
        self.send_text(NetMessage.GAME_MESSAGE, f"action|join_request\nname|{world_name}\ninvitedWorld|0")

    def leave(self) -> None:
        self.send_text(NetMessage.GAME_MESSAGE, "action|quit_to_exit")

    def disconnect(self) -> None:
        self.transport.disconnect()

    def _tile_packet(self, ptype: GamePacketType, ox: int, oy: int, value: int = 0) -> OutboundPacket:
        x, y = self.state.position.get()
        return OutboundPacket(
            type=ptype,
            net_id=self.state.runtime.snapshot().net_id,
            value=value,
            vector_x=x,
            vector_y=y,
            int_x=to_tile(x) + ox,
            int_y=to_tile(y) + oy,
        )

    def punch(self, ox: int, oy: int) -> None:
        self._throttle("punch", self.delays().punch)
        self.send_packet(self._tile_packet(GamePacketType.TILE_CHANGE_REQUEST, ox, oy, FIST_ID))
        self.stats.punches += 1

    def place(self, ox: int, oy: int, item_id: int) -> None:
        self._throttle("place", self.delays().place)
        self.send_packet(self._tile_packet(GamePacketType.TILE_CHANGE_REQUEST, ox, oy, item_id))
        self.stats.places += 1

    def wrench(self, ox: int, oy: int) -> None:
        self.send_packet(self._tile_packet(GamePacketType.TILE_CHANGE_REQUEST, ox, oy, WRENCH_ID))

    def enter_door(self, ox: int, oy: int) -> None:
        self.send_packet(self._tile_packet(GamePacketType.TILE_ACTIVATE_REQUEST, ox, oy))

    def wrench_player(self, net_id: int) -> None:
        self.send_text(NetMessage.GENERIC_TEXT, f"action|wrench\n|netid|{net_id}")

    def wear(self, item_id: int) -> None:
        self.send_packet(OutboundPacket(type=GamePacketType.ITEM_ACTIVATE_REQUEST, value=item_id))

    def drop_item(self, item_id: int, amount: int) -> None:
        """Ask to drop; the confirmation dialog is answered by the dialog slot."""
        def confirm(bot: Bot) -> None:
            bot.send_dialog_return(f"dialog_name|drop_item\nitemID|{item_id}|\ncount|{amount}\n")

        self.set_dialog_handler(confirm)
        self.send_text(NetMessage.GENERIC_TEXT, f"action|drop\n|itemID|{item_id}")

    def trash_item(self, item_id: int, amount: int) -> None:
        def confirm(bot: Bot) -> None:
            bot.send_dialog_return(f"dialog_name|trash_item\nitemID|{item_id}|\ncount|{amount}\n")

        self.set_dialog_handler(confirm)
        self.send_text(NetMessage.GENERIC_TEXT, f"action|trash\n|itemID|{item_id}")

    def accept_access(self) -> None:
        def confirm(bot: Bot) -> None:
            bot.send_dialog_return("dialog_name|acceptaccess\n")

        net_id = self.state.runtime.snapshot().net_id
        self.set_dialog_handler(confirm)
        self.send_dialog_return(f"dialog_name|popup\nnetID|{net_id}|\nbuttonClicked|acceptlock\n")

    def send_dialog_return(self, data: str) -> None:
        self.send_text(NetMessage.GENERIC_TEXT, "action|dialog_return\n" + data)

    def collect(self) -> int:
        """Request pickup of every dropped item within collect range. Returns the count."""
        x, y = self.state.position.get()
        reach = self.automation().collect_range * TILE_SIZE
        nearby = [
            d for d in self.state.world.snapshot().dropped
            if math.hypot(d.x - x, d.y - y) <= reach
        ]
        for item in nearby:
            self._collect_one(item)
        return len(nearby)

    def _collect_one(self, item: DroppedItem) -> None:
        self.send_packet(OutboundPacket(
            type=GamePacketType.ITEM_ACTIVATE_OBJECT_REQUEST,
            vector_x=item.x,
            vector_y=item.y,
            value=item.uid,
        ))
        self.stats.items_collected += 1

    # ---- Movement ----

    def _move_to(self, x: float, y: float) -> None:
        self.state.position.set(x, y)
        self.send_packet(OutboundPacket(
            type=GamePacketType.STATE,
            net_id=self.state.runtime.snapshot().net_id,
            flags=PacketFlag.WALK | PacketFlag.STANDING,
            vector_x=x,
            vector_y=y,
            int_x=-1,
            int_y=-1,
        ))
        self.stats.steps += 1
        if self.automation().auto_collect:
            self.collect()

    def walk(self, ox: int, oy: int) -> None:
        x, y = self.state.position.get()
        self._move_to(x + ox * TILE_SIZE, y + oy * TILE_SIZE)

    def find_path(self, tx: int, ty: int) -> bool:
        """Walk tile by tile to (tx, ty). Returns False if no path exists."""
        world = self.state.world.snapshot()
        if not world.is_active:
            log.warning("find_path(%d, %d) outside a world", tx, ty)
            return False
        start = self.state.position.tile()
        path = find_path(start, (tx, ty), walkable_fn(world, self.state.items.get()))
        if not path:
            log.info("no path %s → (%d, %d)", start, tx, ty)
            return False
        for px, py in path[1:]:
            self._throttle("findpath", self.delays().findpath)
            self._move_to(px * TILE_SIZE, py * TILE_SIZE)
        return True

    def spawn(self, name: str, fn: Callable[..., Any], *args: Any) -> threading.Thread:
        """Run a multi-step action on its own daemon thread."""
        def run() -> None:
            try:
                fn(*args)
            except Exception:
                log.exception("background action %s failed", name)

        t = threading.Thread(target=run, name=f"{self.config.name}-{name}", daemon=True)
        self._threads = [th for th in self._threads if th.is_alive()]
        self._threads.append(t)
        t.start()
        return t

    # ---- Configuration ----

    def delays(self) -> DelayConfig:
        with self._config_lock:
            return self.config.delays

    def automation(self) -> Automation:
        with self._config_lock:
            return self.config.automation

    def set_auto_collect(self, on: bool) -> None:
        with self._config_lock:
            self.config.automation.auto_collect = bool(on)

    def set_auto_reconnect(self, on: bool) -> None:
        with self._config_lock:
            self.config.automation.auto_reconnect = bool(on)

    def set_findpath_delay(self, ms: int) -> None:
        with self._config_lock:
            self.config.delays.findpath = int(ms)

    def set_punch_delay(self, ms: int) -> None:
        with self._config_lock:
            self.config.delays.punch = int(ms)

    def set_place_delay(self, ms: int) -> None:
        with self._config_lock:
            self.config.delays.place = int(ms)

    # ---- Reads ----

    def status(self) -> str:
        return self.state.phase.get().value

    def display_name(self) -> str:
        return self.state.auth.snapshot()[1].display_name

    def is_in_world(self) -> bool:
        return self.state.world.snapshot().is_active

    def has_access(self) -> bool:
        world = self.state.world.snapshot()
        return world.is_active and world.can_build(self.state.runtime.snapshot().user_id)

    def item_info(self, item_id: int) -> ItemInfo | None:
        return self.state.items.get().get_item(item_id)

    def item_info_by_name(self, name: str) -> ItemInfo | None:
        return self.state.items.get().find_by_name(name)

    def item_database(self) -> ItemDatabase:
        return self.state.items.get()

    def status_line(self) -> str:
        """One-line status for display. Never blocks; busy subsystems show '?'."""
        parts = []
        try:
            parts.append(f"[{self.state.phase.try_get().value}]")
        except ResourceUnavailable:
            parts.append("[?]")
        try:
            world = self.state.world.try_snapshot()
            parts.append(f"world={world.name}")
        except ResourceUnavailable:
            parts.append("world=?")
        try:
            x, y = self.state.position.try_get()
            parts.append(f"pos=({to_tile(x)},{to_tile(y)})")
        except ResourceUnavailable:
            parts.append("pos=?")
        try:
            parts.append(f"gems={self.state.inventory.try_snapshot().gems}")
        except ResourceUnavailable:
            parts.append("gems=?")
        parts.append(f"punch={self.stats.punches} place={self.stats.places} collected={self.stats.items_collected}")
        return " | ".join(parts)
