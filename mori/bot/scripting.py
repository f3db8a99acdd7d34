"""
Mori — Lua Script Host

Embeds a Lua runtime (lupa) per bot session and exposes the bot to scripts:

    local bot = getBot()
    bot:on("onChat", function(netId, text)
        if text:find("!punch") then bot:punch(0, 1) end
    end)
    log("standing on " .. bot.tile.x .. "," .. bot.tile.y)

Globals: getBot(), sleep(ms), log(msg), getItemInfo(id),
getItemInfoByName(name), GamePacket([type]).

Bot, world, inventory, position, player and packet objects are Lua tables
with a metatable: methods are Python callables taking the table as first
argument (so `obj:method()` works), plain fields are evaluated on access so
every read sees the current session state.

All script execution happens inside the bus's re-entrant section: running a
script and dispatching callbacks to it never overlap.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Callable

from lupa import LuaRuntime

from mori.bot.session import Bot
from mori.data.items import ItemInfo
from mori.data.state import Player, Tile, to_tile
from mori.errors import ScriptError
from mori.protocol.packets import GamePacketType, OutboundPacket

log = logging.getLogger(__name__)

_PROXY_FACTORY = """
function(methods, getters, setters)
    return setmetatable({}, {
        __index = function(_, key)
            local m = methods[key]
            if m ~= nil then return m end
            local g = getters[key]
            if g ~= nil then return g() end
            return nil
        end,
        __newindex = function(_, key, value)
            local s = setters[key]
            if s == nil then
                error("cannot assign field '" .. tostring(key) .. "'", 2)
            end
            s(value)
        end,
    })
end
"""

# Lua field name -> OutboundPacket attribute
PACKET_FIELDS = {
    "type": "type",
    "objectType": "object_type",
    "jumpCount": "jump_count",
    "animationType": "animation_type",
    "netId": "net_id",
    "targetNetId": "target_net_id",
    "flags": "flags",
    "floatVar": "float_variable",
    "value": "value",
    "vecX": "vector_x",
    "vecY": "vector_y",
    "vecX2": "vector_x2",
    "vecY2": "vector_y2",
    "particleRotation": "particle_rotation",
    "intX": "int_x",
    "intY": "int_y",
    "extDataLength": "extended_data_length",
}

_FLOAT_FIELDS = {f.name for f in fields(OutboundPacket) if f.type in ("float", float)}


class LuaHandler:
    """A Lua function subscribed on the bus. release() drops the reference."""

    def __init__(self, host: ScriptHost, fn: Any, event: str):
        self.host = host
        self.fn = fn
        self.event = event

    @property
    def released(self) -> bool:
        return self.fn is None

    def __call__(self, *args: Any) -> Any:
        fn = self.fn
        if fn is None:
            return None
        return fn(*(self.host.to_lua(a) for a in args))

    def release(self) -> None:
        self.fn = None


class ScriptHost:
    def __init__(self, bot: Bot, sleep: Callable[[float], None] | None = None):
        self.bot = bot
        self._sleep = sleep or bot.sleep
        self.lua = LuaRuntime(unpack_returned_tuples=True)
        self._make_proxy = self.lua.eval(_PROXY_FACTORY)
        self._bot_proxy = None
        self._setup_globals()

    # ---- Conversion ----

    def proxy(
        self,
        methods: dict[str, Callable] | None = None,
        getters: dict[str, Callable[[], Any]] | None = None,
        setters: dict[str, Callable[[Any], None]] | None = None,
    ) -> Any:
        return self._make_proxy(
            self.lua.table_from(methods or {}),
            self.lua.table_from(getters or {}),
            self.lua.table_from(setters or {}),
        )

    def to_lua(self, value: Any) -> Any:
        """Python value -> something Lua can index (tables instead of dicts/lists)."""
        match value:
            case None | bool() | int() | float() | str():
                return value
            case Player():
                return self.player_proxy(value)
            case ItemInfo():
                return self.to_lua(value.to_dict())
            case OutboundPacket():
                return self.packet_proxy(value)
            case dict():
                return self.lua.table_from({k: self.to_lua(v) for k, v in value.items()})
            case list() | tuple():
                return self.lua.table_from([self.to_lua(v) for v in value])
            case _:
                return value

    # ---- Globals ----

    def _setup_globals(self) -> None:
        g = self.lua.globals()
        g["getBot"] = self.get_bot
        g["sleep"] = self._lua_sleep
        g["log"] = self._lua_log
        g["getItemInfo"] = self._item_info
        g["getItemInfoByName"] = self._item_info_by_name
        g["GamePacket"] = self._new_packet

    def _lua_sleep(self, ms: Any) -> None:
        self._sleep(max(float(ms), 0.0) / 1000)

    def _lua_log(self, msg: Any) -> None:
        text = str(msg)
        log.info("[Lua] %s", text)
        self.bot.state.runtime.push_log(text)

    def _item_info(self, item_id: Any) -> Any:
        return self.to_lua(self.bot.item_info(int(item_id)))

    def _item_info_by_name(self, name: Any) -> Any:
        return self.to_lua(self.bot.item_info_by_name(str(name)))

    def _new_packet(self, ptype: Any = None) -> Any:
        pkt = OutboundPacket()
        if ptype is not None:
            pkt.type = int(ptype)
        return self.packet_proxy(pkt)

    # ---- Running ----

    def run(self, source: str, name: str = "<script>") -> None:
        """Execute a script inside the session's script section."""
        with self.bot.bus.lock:
            try:
                self.lua.execute(source)
            except Exception as e:
                self.bot.state.runtime.push_log(f"[Lua] {name}: {e}")
                log.error("Lua script %s failed: %s", name, e)
                raise ScriptError(f"{name}: {e}") from e
        log.info("Lua script %s loaded (%d listeners)", name, self.bot.bus.count())

    def run_file(self, path: str | Path) -> None:
        path = Path(path)
        self.run(path.read_text(encoding="utf-8"), name=path.name)

    def close(self) -> None:
        """Drop every Lua listener."""
        self.bot.bus.unsubscribe_everything()

    # ---- Bot object ----

    def get_bot(self) -> Any:
        if self._bot_proxy is None:
            self._bot_proxy = self._build_bot_proxy()
        return self._bot_proxy

    def _build_bot_proxy(self) -> Any:
        bot = self.bot
        state = bot.state

        def method(fn: Callable[..., Any]) -> Callable[..., Any]:
            # drop the implicit self of obj:method(...)
            return lambda _self, *args: fn(*args)

        def subscribe(once: bool) -> Callable[..., int]:
            def on(event: Any, fn: Any) -> int:
                event = str(event)
                return bot.bus.subscribe(event, LuaHandler(self, fn, event), once=once)
            return on

        methods = {
            # actions
            "say": lambda msg: bot.say(str(msg)),
            "warp": lambda world: bot.warp(str(world)),
            "leave": bot.leave,
            "disconnect": bot.disconnect,
            "punch": lambda ox, oy: bot.punch(int(ox), int(oy)),
            "place": lambda ox, oy, item_id: bot.place(int(ox), int(oy), int(item_id)),
            "wrench": lambda ox, oy: bot.wrench(int(ox), int(oy)),
            "wrenchPlayer": lambda net_id: bot.wrench_player(int(net_id)),
            "wear": lambda item_id: bot.wear(int(item_id)),
            "drop": lambda item_id, amount: bot.drop_item(int(item_id), int(amount)),
            "trash": lambda item_id, amount: bot.trash_item(int(item_id), int(amount)),
            "collect": bot.collect,
            "acceptAccess": bot.accept_access,
            "hasAccess": bot.has_access,
            "enterDoor": lambda ox, oy: bot.enter_door(int(ox), int(oy)),
            "sendDialogReturn": lambda data: bot.send_dialog_return(str(data)),
            # movement
            "walk": lambda ox, oy: bot.walk(int(ox), int(oy)),
            "findPath": lambda x, y: bot.find_path(int(x), int(y)),
            # config
            "setAutoCollect": lambda on: bot.set_auto_collect(bool(on)),
            "setAutoReconnect": lambda on: bot.set_auto_reconnect(bool(on)),
            "setFindPathDelay": lambda ms: bot.set_findpath_delay(int(ms)),
            "setPunchDelay": lambda ms: bot.set_punch_delay(int(ms)),
            "setPlaceDelay": lambda ms: bot.set_place_delay(int(ms)),
            # raw packets
            "sendTextPacket": lambda msg_type, text: bot.send_text(int(msg_type), str(text)),
            "sendGamePacket": lambda pkt: bot.send_packet(self.unwrap_packet(pkt)),
            "sendGamePacketRaw": lambda pkt, reliable=True: bot.send_packet(
                self.unwrap_packet(pkt), reliable=bool(reliable)),
            # listeners
            "on": subscribe(once=False),
            "once": subscribe(once=True),
            "removeListener": lambda event: bot.bus.unsubscribe_all(str(event)),
            "removeAllListeners": bot.bus.unsubscribe_everything,
        }

        def tile() -> Any:
            tx, ty = state.position.tile()
            return self.lua.table_from({"x": tx, "y": ty})

        getters = {
            "pos": lambda: self.position_proxy(*state.position.get()),
            "tile": tile,
            "gems": lambda: state.inventory.snapshot().gems,
            "netId": lambda: state.runtime.snapshot().net_id,
            "userId": lambda: state.runtime.snapshot().user_id,
            "name": bot.display_name,
            "status": bot.status,
            "ping": lambda: state.runtime.snapshot().ping,
            "isInWorld": bot.is_in_world,
            "world": self.world_proxy,
            "inventory": self.inventory_proxy,
        }
        return self.proxy({k: method(v) for k, v in methods.items()}, getters)

    # ---- Views ----

    def position_proxy(self, x: float, y: float) -> Any:
        return self.proxy({
            "x": lambda _self: x,
            "y": lambda _self: y,
            "tileX": lambda _self: to_tile(x),
            "tileY": lambda _self: to_tile(y),
        })

    def player_proxy(self, player: Player) -> Any:
        px, py = player.position
        return self.proxy(getters={
            "name": lambda: player.name,
            "netId": lambda: player.net_id,
            "userId": lambda: player.user_id,
            "country": lambda: player.country,
            "pos": lambda: self.position_proxy(px, py),
            "invisible": lambda: player.invisible,
            "isMod": lambda: player.is_moderator,
        })

    def tile_table(self, tile: Tile) -> Any:
        collision = self.bot.item_database().collision_type(tile.foreground)
        return self.lua.table_from({
            "x": tile.x,
            "y": tile.y,
            "foreground": tile.foreground,
            "background": tile.background,
            "isCollidable": collision in (1, 6),
            "collisionType": collision,
            "hasLock": tile.has_lock,
            "isSeed": tile.is_seed,
        })

    def world_proxy(self) -> Any:
        state = self.bot.state

        def get_tile(_self, x: Any, y: Any) -> Any:
            t = state.world.snapshot().get_tile(int(x), int(y))
            return self.tile_table(t) if t is not None else None

        def get_tiles(_self) -> Any:
            return self.lua.table_from([self.tile_table(t) for t in state.world.snapshot().tiles])

        def get_players(_self) -> Any:
            return self.lua.table_from([self.player_proxy(p) for p in state.players.snapshot()])

        def get_player(_self, net_id: Any) -> Any:
            p = state.players.get(int(net_id))
            return self.player_proxy(p) if p is not None else None

        def get_dropped(_self) -> Any:
            return self.to_lua([
                {"uid": d.uid, "id": d.id, "x": d.x, "y": d.y, "count": d.count}
                for d in state.world.snapshot().dropped
            ])

        return self.proxy(
            {
                "getTile": get_tile,
                "getTiles": get_tiles,
                "getPlayers": get_players,
                "getPlayer": get_player,
                "getDroppedItems": get_dropped,
                "isInWorld": lambda _self: self.bot.is_in_world(),
            },
            {
                "name": lambda: state.world.snapshot().name,
                "width": lambda: state.world.snapshot().width,
                "height": lambda: state.world.snapshot().height,
            },
        )

    def inventory_proxy(self) -> Any:
        inv = self.bot.state.inventory

        def find_item(_self, item_id: Any) -> Any:
            snap = inv.snapshot()
            amount = snap.item_count(int(item_id))
            if not amount:
                return None
            return self.lua.table_from({"id": int(item_id), "amount": amount})

        def get_items(_self) -> Any:
            return self.to_lua([
                {"id": item_id, "amount": amount}
                for item_id, amount in sorted(inv.snapshot().items.items())
            ])

        return self.proxy(
            {
                "getItemCount": lambda _self, item_id: inv.snapshot().item_count(int(item_id)),
                "hasItem": lambda _self, item_id, count=1: inv.snapshot().has_item(
                    int(item_id), int(count) if count is not None else 1),
                "getItems": get_items,
                "getSize": lambda _self: inv.snapshot().size,
                "getCount": lambda _self: inv.snapshot().count,
                "isFull": lambda _self: inv.snapshot().is_full(),
                "findItem": find_item,
            },
            {"gems": lambda: inv.snapshot().gems},
        )

    # ---- Packets ----

    def packet_proxy(self, pkt: OutboundPacket) -> Any:
        """Lua view over a packet. Reading `_packet` yields an independent copy."""
        def getter(attr: str) -> Callable[[], Any]:
            return lambda: int(getattr(pkt, attr)) if attr not in _FLOAT_FIELDS else getattr(pkt, attr)

        def setter(attr: str) -> Callable[[Any], None]:
            def set_(value: Any) -> None:
                setattr(pkt, attr, float(value) if attr in _FLOAT_FIELDS else int(value))
            return set_

        getters = {name: getter(attr) for name, attr in PACKET_FIELDS.items()}
        getters["_packet"] = pkt.copy
        setters = {name: setter(attr) for name, attr in PACKET_FIELDS.items()}
        return self.proxy(getters=getters, setters=setters)

    def unwrap_packet(self, value: Any) -> OutboundPacket:
        """GamePacket proxy or plain Lua table -> a fresh OutboundPacket."""
        if isinstance(value, OutboundPacket):
            return value.copy()
        inner = value["_packet"]
        if isinstance(inner, OutboundPacket):
            return inner
        pkt = OutboundPacket(type=GamePacketType.STATE)
        for name, attr in PACKET_FIELDS.items():
            v = value[name]
            if v is not None:
                setattr(pkt, attr, float(v) if attr in _FLOAT_FIELDS else int(v))
        return pkt
