"""
Mori — Event Dispatcher

Turns one inbound variant list into session state changes and script
notifications. Runs on the transport's receive thread.

    frame → variant.decode → [onVariant tap] → one handler by function name

Handlers:
    OnSendToServer          store redirect target, flag redirecting, drop connection
    OnSuperMainStartAccept… item database checksum gate → InGame
    OnSetPos                own position → onSetPos(x, y)
    OnTalkBubble            onChat(net_id, text)
    OnConsoleMessage        onConsole(text)
    OnSetBux                gems += delta
    SetHasGrowID            display name
    OnRemove                player leaves → onPlayerLeave(net_id)
    OnSpawn                 self-record or player join → onPlayerJoin(player)
    OnDialogRequest         onDialogRequest(text) + pending dialog slot
    OnRequestWorldSelectMenu back at the world menu

Anything else is ignored. A malformed event (DecodeError / ProtocolShapeError)
is logged and dropped; the next frame is processed normally. Each handler
takes at most one state lock at a time.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mori.data.state import ConnectionPhase, Player
from mori.errors import DecodeError, ProtocolShapeError
from mori.protocol import text as textblock
from mori.protocol import variant
from mori.protocol.packets import NetMessage
from mori.protocol.proton import file_hash
from mori.protocol.variant import VariantList

if TYPE_CHECKING:
    from mori.bot.session import Bot

log = logging.getLogger(__name__)

# ---- Script notification names (script ABI, do not rename) ----
EV_VARIANT = "onVariant"
EV_SET_POS = "onSetPos"
EV_CHAT = "onChat"
EV_CONSOLE = "onConsole"
EV_PLAYER_LEAVE = "onPlayerLeave"
EV_PLAYER_JOIN = "onPlayerJoin"
EV_DIALOG_REQUEST = "onDialogRequest"

GAZETTE_SIGNATURE = "Gazette"
GAZETTE_RETURN = "action|dialog_return\ndialog_name|gazette\nbuttonClicked|banner\n"
ENTER_GAME = "action|enter_game\n"
REFRESH_ITEM_DATA = "action|refresh_item_data\n"


class EventDispatcher:
    """Applies server events to one Bot session."""

    def __init__(self, bot: Bot):
        self.bot = bot
        self.handled = 0
        self.dropped = 0

    def handle(self, data: bytes) -> str | None:
        """Decode and dispatch one frame. Returns the event name, or None if dropped."""
        try:
            vl = variant.decode(data)
        except DecodeError as e:
            self.dropped += 1
            log.warning("Dropping undecodable frame (%d bytes): %s", len(data), e)
            return None
        return self.dispatch(vl)

    def dispatch(self, vl: VariantList) -> str | None:
        try:
            name = vl.function_name
        except DecodeError as e:
            self.dropped += 1
            log.warning("Dropping event without a name: %s", e)
            return None

        log.debug("Function call: %s", name)
        bus = self.bot.bus

        if bus.has_subscribers(EV_VARIANT):
            bus.invoke(EV_VARIANT, vl.to_generic())

        try:
            self._route(name, vl)
        except (DecodeError, ProtocolShapeError) as e:
            self.dropped += 1
            log.warning("Dropping malformed %s: %s", name, e)
            return None
        self.handled += 1
        return name

    def _route(self, name: str, vl: VariantList) -> None:
        match name:
            case "OnSendToServer":
                self._on_send_to_server(vl)
            case "OnSuperMainStartAcceptLogonHrdxs47254722215a":
                self._on_logon_accept(vl)
            case "OnSetPos":
                self._on_set_pos(vl)
            case "OnTalkBubble":
                self.bot.bus.invoke(EV_CHAT, vl.require(1).as_int32(), vl.require(2).as_text())
            case "OnConsoleMessage":
                self.bot.bus.invoke(EV_CONSOLE, vl.require(1).as_text())
            case "OnSetBux":
                self.bot.state.inventory.add_gems(vl.require(1).as_int32())
            case "SetHasGrowID":
                self.bot.state.auth.set_display_name(vl.require(2).as_text())
            case "OnRemove":
                self._on_remove(vl)
            case "OnSpawn":
                self._on_spawn(vl)
            case "OnDialogRequest":
                self._on_dialog_request(vl)
            case "OnRequestWorldSelectMenu":
                self._on_world_select_menu()
            case _:
                pass

    # ---- Handlers ----

    def _on_send_to_server(self, vl: VariantList) -> None:
        port = vl.require(1).as_int32()
        token = vl.require(2).as_int32()
        user_id = vl.require(3).as_int32()
        parts = [p.rstrip() for p in vl.require(4).as_text().split("|")]
        aat = vl.require(5).as_int32()
        if len(parts) < 3:
            raise ProtocolShapeError(f"server data needs host|door|uuid, got {len(parts)} fields")

        state = self.bot.state
        state.auth.set_redirect(parts[0], port & 0xFFFF, token, user_id, parts[1], parts[2], aat)
        state.runtime.set_redirecting(True)
        log.info("Redirect to %s:%d (door=%r)", parts[0], port, parts[1])
        self.bot.transport.disconnect()

    def _on_logon_accept(self, vl: VariantList) -> None:
        server_hash = vl.require(1).as_uint32()
        path = self.bot.config.items_path
        local_hash = file_hash(path)

        if local_hash is not None and local_hash == server_hash:
            try:
                db = self.bot.item_loader(path)
            except Exception as e:
                log.error("Item database %s matches checksum but failed to load: %s", path, e)
            else:
                state = self.bot.state
                self.bot.send_text(NetMessage.GENERIC_TEXT, ENTER_GAME)
                state.runtime.set_redirecting(False)
                state.items.swap(db)
                state.phase.set(ConnectionPhase.IN_GAME)
                log.info("Item database accepted (hash=%08x, %d items)", server_hash, db.item_count)
                return
        elif local_hash is None:
            log.info("No cached item database at %s, requesting it", path)
        else:
            log.info("Item database outdated (local=%08x server=%08x)", local_hash, server_hash)

        self.bot.send_text(NetMessage.GENERIC_TEXT, REFRESH_ITEM_DATA)

    def _on_set_pos(self, vl: VariantList) -> None:
        x, y = vl.require(1).as_vec2()
        self.bot.state.position.set(x, y)
        self.bot.bus.invoke(EV_SET_POS, x, y)

    def _on_remove(self, vl: VariantList) -> None:
        block = textblock.parse_text_block(vl.require(1).as_text())
        net_id = textblock.require_int(block, "netID")
        if self.bot.state.players.remove(net_id) is None:
            log.debug("OnRemove for unknown net id %d", net_id)
        self.bot.bus.invoke(EV_PLAYER_LEAVE, net_id)

    def _on_spawn(self, vl: VariantList) -> None:
        block = textblock.parse_text_block(vl.require(1).as_text())

        if "type" in block:
            net_id = textblock.require_int(block, "netID")
            user_id = textblock.require_int(block, "userID")
            self.bot.state.runtime.set_self(net_id, user_id)
            log.info("Spawned as net id %d (user %d)", net_id, user_id)
            return

        player = self._build_player(block)

        if self.bot.config.automation.leave_on_moderator and (player.is_moderator or player.invisible):
            log.warning("Leaving world: %s (mod=%s invis=%s) spawned",
                        player.name, player.is_moderator, player.invisible)
            self.bot.leave()

        # join is announced before the registry sees the player
        self.bot.bus.invoke(EV_PLAYER_JOIN, player)
        self.bot.state.players.insert(player)

    @staticmethod
    def _build_player(block: dict[str, str]) -> Player:
        position = (0.0, 0.0)
        if "posXY" in block:
            position = textblock.parse_vec2(block["posXY"])
        return Player(
            name=textblock.require(block, "name"),
            net_id=textblock.require_int(block, "netID"),
            user_id=textblock.require_int(block, "userID"),
            country=block.get("country", ""),
            position=position,
            invisible=textblock.optional_int(block, "invis") != 0,
            mod_state=textblock.optional_int(block, "mstate"),
            avatar=block.get("avatar", ""),
            online_id=block.get("onlineID", ""),
            eid=block.get("eid", ""),
            ip=block.get("ip", ""),
            collision_rect=block.get("colrect", ""),
            title_icon=block.get("titleIcon", ""),
            spawn=block.get("spawn", ""),
        )

    def _on_dialog_request(self, vl: VariantList) -> None:
        message = vl.require(1).as_text()
        self.bot.bus.invoke(EV_DIALOG_REQUEST, message)

        handler = self.bot.take_dialog_handler()
        if handler is not None:
            handler(self.bot)

        if GAZETTE_SIGNATURE in message:
            self.bot.send_text(NetMessage.GENERIC_TEXT, GAZETTE_RETURN)

    def _on_world_select_menu(self) -> None:
        state = self.bot.state
        state.world.reset()
        state.players.clear()
        state.phase.set(ConnectionPhase.IN_GAME)
