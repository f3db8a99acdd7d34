"""Tests for the Lua script host."""

import pytest

from conftest import make_world
from mori.bot.scripting import LuaHandler, ScriptHost
from mori.data.state import DroppedItem
from mori.errors import ScriptError
from mori.protocol.packets import GamePacketType, NetMessage
from mori.protocol.variant import encode


@pytest.fixture
def host(bot):
    return ScriptHost(bot)


def _g(host, name):
    return host.lua.globals()[name]


class TestListeners:
    def test_on_chat(self, host, bot):
        host.run("""
            seen = {}
            getBot():on("onChat", function(netId, text)
                seen[#seen + 1] = netId .. ":" .. text
            end)
        """)
        bot.handle(encode("OnTalkBubble", 7, "hello"))
        bot.handle(encode("OnTalkBubble", 8, "again"))
        seen = _g(host, "seen")
        assert (seen[1], seen[2]) == ("7:hello", "8:again")

    def test_once(self, host, bot):
        host.run("""
            count = 0
            getBot():once("onConsole", function(text) count = count + 1 end)
        """)
        bot.handle(encode("OnConsoleMessage", "a"))
        bot.handle(encode("OnConsoleMessage", "b"))
        assert _g(host, "count") == 1
        assert not bot.bus.has_subscribers("onConsole")

    def test_on_returns_token(self, host, bot):
        host.run('token = getBot():on("onChat", function() end)')
        assert bot.bus.unsubscribe(_g(host, "token"))

    def test_remove_listener_releases(self, host, bot):
        host.run('getBot():on("onChat", function() end)')
        handler = bot.bus._registry["onChat"][0].handle
        assert isinstance(handler, LuaHandler)
        host.run('removed = getBot():removeListener("onChat")')
        assert _g(host, "removed") == 1
        assert handler.released
        assert not bot.bus.has_subscribers("onChat")

    def test_remove_all_listeners(self, host, bot):
        host.run("""
            local bot = getBot()
            bot:on("onChat", function() end)
            bot:on("onConsole", function() end)
            bot:removeAllListeners()
        """)
        assert bot.bus.count() == 0

    def test_close_drops_listeners(self, host, bot):
        host.run('getBot():on("onChat", function() end)')
        host.close()
        assert bot.bus.count() == 0

    def test_player_join_object(self, host, bot):
        host.run("""
            getBot():on("onPlayerJoin", function(p)
                joined = p.name .. "/" .. p.netId .. "/" .. p.pos:tileX()
            end)
        """)
        bot.handle(encode("OnSpawn", "spawn|avatar\nnetID|3\nuserID|9\nname|Bob\nposXY|64|32"))
        assert _g(host, "joined") == "Bob/3/2"

    def test_set_pos_args(self, host, bot):
        host.run('getBot():on("onSetPos", function(x, y) px, py = x, y end)')
        bot.handle(encode("OnSetPos", (100.5, 200.25)))
        assert (_g(host, "px"), _g(host, "py")) == (100.5, 200.25)

    def test_variant_table(self, host, bot):
        host.run('getBot():on("onVariant", function(v) first = v[1]; second = v[2] end)')
        bot.handle(encode("OnSetBux", 5))
        assert _g(host, "first") == "OnSetBux"
        assert _g(host, "second") == 5

    def test_callback_error_logged(self, host, bot):
        host.run('getBot():on("onChat", function() error("boom") end)')
        bot.handle(encode("OnTalkBubble", 1, "x"))
        logs = bot.state.runtime.snapshot().logs
        assert any("[Lua] Error in 'onChat' callback" in line and "boom" in line for line in logs)
        assert bot.bus.error_count == 1
        # still subscribed
        assert bot.bus.has_subscribers("onChat")


class TestReads:
    def test_position(self, host, bot):
        bot.state.position.set(100.5, 200.25)
        host.run("""
            local bot = getBot()
            x = bot.pos:x()
            tx, ty = bot.tile.x, bot.tile.y
        """)
        assert _g(host, "x") == 100.5
        assert (_g(host, "tx"), _g(host, "ty")) == (3, 6)

    def test_reads_are_live(self, host, bot):
        host.run("bot = getBot()")
        bot.handle(encode("OnSetBux", 40))
        host.run("gems = bot.gems")
        assert _g(host, "gems") == 40

    def test_identity(self, host, bot):
        bot.state.runtime.set_self(4, 900)
        bot.state.auth.set_display_name("Mori")
        host.run("""
            local bot = getBot()
            info = bot.name .. "|" .. bot.netId .. "|" .. bot.userId .. "|" .. bot.status
            inworld = bot.isInWorld
        """)
        assert _g(host, "info") == "Mori|4|900|FetchingServerData"
        assert _g(host, "inworld") is False

    def test_ping_reported_by_transport(self, host, bot):
        bot.state.runtime.set_ping(42)
        host.run("ping = getBot().ping")
        assert _g(host, "ping") == 42

    def test_has_access(self, host, bot):
        bot.state.runtime.set_self(4, 900)
        world = make_world(["..", ".."], name="FARM")
        world.owner_id, world.access = 5, [900]
        bot.enter_world(world)
        host.run("allowed = getBot():hasAccess()")
        assert _g(host, "allowed") is True

    def test_world(self, host, bot, items_file):
        bot.state.items.swap(bot.item_loader(items_file))
        world = make_world(["#.", ".."], name="FARM")
        world.dropped.append(DroppedItem(uid=1, id=2, x=10.0, y=20.0, count=3))
        bot.enter_world(world)
        host.run("""
            local w = getBot().world
            name, width = w.name, w.width
            local t = w:getTile(0, 0)
            fg, solid = t.foreground, t.isCollidable
            missing = w:getTile(5, 5) == nil
            ntiles = #w:getTiles()
            drop = w:getDroppedItems()[1].count
        """)
        assert (_g(host, "name"), _g(host, "width")) == ("FARM", 2)
        assert (_g(host, "fg"), _g(host, "solid")) == (2, True)
        assert _g(host, "missing") is True
        assert _g(host, "ntiles") == 4
        assert _g(host, "drop") == 3

    def test_players(self, host, bot):
        bot.handle(encode("OnSpawn", "spawn|avatar\nnetID|3\nuserID|9\nname|Bob"))
        host.run("""
            local w = getBot().world
            n = #w:getPlayers()
            who = w:getPlayer(3).name
            nobody = w:getPlayer(4) == nil
        """)
        assert _g(host, "n") == 1
        assert _g(host, "who") == "Bob"
        assert _g(host, "nobody") is True

    def test_inventory(self, host, bot):
        bot.state.inventory.set_item(2, 10)
        bot.state.inventory.set_item(5, 1)
        host.run("""
            local inv = getBot().inventory
            dirt = inv:getItemCount(2)
            has, hasMany = inv:hasItem(2), inv:hasItem(2, 11)
            size, count, full = inv:getSize(), inv:getCount(), inv:isFull()
            firstId = inv:getItems()[1].id
            none = inv:findItem(99) == nil
        """)
        assert _g(host, "dirt") == 10
        assert (_g(host, "has"), _g(host, "hasMany")) == (True, False)
        assert (_g(host, "size"), _g(host, "count"), _g(host, "full")) == (16, 2, False)
        assert _g(host, "firstId") == 2
        assert _g(host, "none") is True

    def test_item_info(self, host, bot, items_file):
        bot.state.items.swap(bot.item_loader(items_file))
        host.run("""
            dirt = getItemInfo(2).name
            lockId = getItemInfoByName("World Lock").id
            unknown = getItemInfo(12345) == nil
        """)
        assert _g(host, "dirt") == "Dirt"
        assert _g(host, "lockId") == 242
        assert _g(host, "unknown") is True


class TestActions:
    def test_say_and_punch(self, host, bot, transport):
        host.run("""
            local bot = getBot()
            bot:say("hi")
            bot:punch(0, 1)
        """)
        assert transport.texts() == ["action|input\n|text|hi"]
        assert transport.packets()[0].value == 18

    def test_config_setters(self, host, bot):
        host.run("""
            local bot = getBot()
            bot:setAutoCollect(false)
            bot:setPunchDelay(250)
        """)
        assert not bot.automation().auto_collect
        assert bot.delays().punch == 250

    def test_send_text_packet(self, host, transport):
        host.run('getBot():sendTextPacket(2, "action|respawn")')
        assert transport.sent[-1].msg_type is NetMessage.GENERIC_TEXT
        assert transport.texts() == ["action|respawn"]

    def test_sleep_uses_bot_sleep(self, host, sleeps):
        host.run("sleep(250)")
        assert sleeps == [0.25]

    def test_log(self, host, bot):
        host.run('log("hello from lua")')
        assert bot.state.runtime.snapshot().logs[-1].endswith("hello from lua")


class TestGamePacket:
    def test_send_game_packet(self, host, transport):
        host.run("""
            local p = GamePacket(3)
            p.value = 18
            p.intX, p.intY = 4, 5
            p.vecX = 12.5
            getBot():sendGamePacket(p)
        """)
        pkt = transport.packets()[-1]
        assert pkt.type == GamePacketType.TILE_CHANGE_REQUEST
        assert pkt.value == 18
        assert (pkt.int_x, pkt.int_y) == (4, 5)
        assert pkt.vector_x == 12.5

    def test_sent_packet_is_a_copy(self, host, transport):
        host.run("""
            p = GamePacket()
            p.value = 1
            getBot():sendGamePacket(p)
            p.value = 2
            getBot():sendGamePacket(p)
        """)
        assert [p.value for p in transport.packets()] == [1, 2]

    def test_plain_table(self, host, transport):
        host.run("getBot():sendGamePacket({type = 10, value = 48})")
        pkt = transport.packets()[-1]
        assert pkt.type == GamePacketType.ITEM_ACTIVATE_REQUEST
        assert pkt.value == 48

    def test_unreliable(self, host, transport):
        host.run("getBot():sendGamePacketRaw(GamePacket(22), false)")
        assert not transport.sent[-1].reliable

    def test_unknown_field_assignment_fails(self, host):
        with pytest.raises(ScriptError):
            host.run("local p = GamePacket(); p.bogus = 1")

    def test_read_back(self, host):
        host.run("""
            local p = GamePacket(0)
            p.netId = 7
            got = p.netId
        """)
        assert _g(host, "got") == 7

    def test_out_of_range_target_wraps(self, host, transport):
        host.run("""
            local p = GamePacket(0)
            p.targetNetId = 4294967295
            getBot():sendGamePacket(p)
        """)
        assert transport.packets()[-1].target_net_id == -1


class TestRun:
    def test_syntax_error(self, host, bot):
        with pytest.raises(ScriptError):
            host.run("this is not lua", name="broken.lua")
        assert "broken.lua" in bot.state.runtime.snapshot().logs[-1]

    def test_runtime_error(self, host):
        with pytest.raises(ScriptError):
            host.run('error("nope")')

    def test_run_file(self, host, bot, tmp_path):
        path = tmp_path / "farm.lua"
        path.write_text('getBot():on("onChat", function() end)')
        host.run_file(path)
        assert bot.bus.count("onChat") == 1

