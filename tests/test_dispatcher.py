"""Tests for server event dispatch against a live session."""

from mori.data.state import ConnectionPhase
from mori.protocol.proton import file_hash
from mori.protocol.variant import Value, VariantList, VariantType, encode

LOGON = "OnSuperMainStartAcceptLogonHrdxs47254722215a"


def _spawn(**fields) -> bytes:
    block = "\n".join(f"{k}|{v}" for k, v in fields.items())
    return encode("OnSpawn", block)


def _player_spawn(net_id: int, name: str = "Bob", **extra) -> bytes:
    return _spawn(spawn="avatar", netID=net_id, userID=100 + net_id, name=name,
                  country="us", posXY="1440|736", **extra)


class TestPosition:
    def test_set_pos(self, bot):
        seen = []
        bot.bus.subscribe("onSetPos", lambda x, y: seen.append((x, y)))
        assert bot.handle(encode("OnSetPos", (100.5, 200.25))) == "OnSetPos"
        assert bot.state.position.get() == (100.5, 200.25)
        assert bot.state.position.tile() == (3, 6)
        assert seen == [(100.5, 200.25)]

    def test_wrong_type_dropped(self, bot):
        assert bot.handle(encode("OnSetPos", "not a vector")) is None
        assert bot.state.position.get() == (0.0, 0.0)
        assert bot.dispatcher.dropped == 1


class TestChat:
    def test_talk_bubble(self, bot):
        seen = []
        bot.bus.subscribe("onChat", lambda n, t: seen.append((n, t)))
        bot.handle(encode("OnTalkBubble", 7, "hello"))
        assert seen == [(7, "hello")]

    def test_once_chat(self, bot):
        seen = []
        bot.bus.subscribe("onChat", lambda n, t: seen.append(t), once=True)
        bot.handle(encode("OnTalkBubble", 7, "one"))
        bot.handle(encode("OnTalkBubble", 7, "two"))
        assert seen == ["one"]

    def test_console(self, bot):
        seen = []
        bot.bus.subscribe("onConsole", seen.append)
        bot.handle(encode("OnConsoleMessage", "`oWelcome"))
        assert seen == ["`oWelcome"]

    def test_missing_text_dropped(self, bot):
        seen = []
        bot.bus.subscribe("onChat", lambda n, t: seen.append(t))
        assert bot.handle(encode("OnTalkBubble", 7)) is None
        assert seen == []

    def test_next_frame_still_processed(self, bot):
        bot.handle(b"\x05\x00")
        bot.handle(encode("OnSetBux", 50))
        assert bot.dispatcher.dropped == 1
        assert bot.state.inventory.snapshot().gems == 50


class TestAccount:
    def test_gems_accumulate(self, bot):
        bot.handle(encode("OnSetBux", 50))
        bot.handle(encode("OnSetBux", -20))
        assert bot.state.inventory.snapshot().gems == 30

    def test_display_name(self, bot):
        bot.handle(encode("SetHasGrowID", 1, "Mori"))
        assert bot.display_name() == "Mori"

    def test_unknown_event_ignored(self, bot):
        assert bot.handle(encode("OnCountryState", "us")) == "OnCountryState"
        assert bot.transport.sent == []


class TestSpawn:
    def test_self_record(self, bot):
        bot.handle(_spawn(spawn="avatar", type="local", netID=4, userID=900, name="me"))
        rt = bot.state.runtime.snapshot()
        assert (rt.net_id, rt.user_id) == (4, 900)
        assert len(bot.state.players) == 0

    def test_player_join(self, bot):
        joined = []
        bot.bus.subscribe("onPlayerJoin", joined.append)
        bot.handle(_player_spawn(3))
        p = bot.state.players.get(3)
        assert p.name == "Bob"
        assert p.user_id == 103
        assert p.country == "us"
        assert p.position == (1440.0, 736.0)
        assert joined[0].net_id == 3

    def test_join_fires_before_insert(self, bot):
        present = []
        bot.bus.subscribe("onPlayerJoin", lambda p: present.append(bot.state.players.get(p.net_id)))
        bot.handle(_player_spawn(3))
        assert present == [None]

    def test_same_net_id_overwrites(self, bot):
        bot.handle(_player_spawn(3, name="Bob"))
        bot.handle(_player_spawn(3, name="Alice"))
        assert len(bot.state.players) == 1
        assert bot.state.players.get(3).name == "Alice"

    def test_missing_name_dropped(self, bot):
        assert bot.handle(_spawn(spawn="avatar", netID=3, userID=1)) is None
        assert len(bot.state.players) == 0

    def test_moderator_triggers_leave(self, bot, transport):
        bot.handle(_player_spawn(9, name="Mod", mstate=1))
        assert "action|quit_to_exit" in transport.texts()
        assert bot.state.players.get(9).is_moderator

    def test_invisible_triggers_leave(self, bot, transport):
        bot.handle(_player_spawn(9, invis=1))
        assert "action|quit_to_exit" in transport.texts()

    def test_stay_on_moderator(self, bot, transport):
        bot.config.automation.leave_on_moderator = False
        bot.handle(_player_spawn(9, mstate=1))
        assert transport.texts() == []


class TestRemove:
    def test_leave(self, bot):
        left = []
        bot.bus.subscribe("onPlayerLeave", left.append)
        bot.handle(_player_spawn(3))
        bot.handle(encode("OnRemove", "netID|3\n"))
        assert bot.state.players.get(3) is None
        assert left == [3]

    def test_unknown_net_id_still_notified(self, bot):
        left = []
        bot.bus.subscribe("onPlayerLeave", left.append)
        assert bot.handle(encode("OnRemove", "netID|42\n")) == "OnRemove"
        assert left == [42]


class TestRedirect:
    def test_send_to_server(self, bot, transport):
        bot.handle(encode("OnSendToServer", 17092, 555, 777, "10.0.0.2|door1|uuid-9 ", 3))
        server, login = bot.state.auth.snapshot()
        assert (server.host, server.port) == ("10.0.0.2", 17092)
        assert (login.token, login.user, login.door_id, login.uuid, login.aat) == (555, 777, "door1", "uuid-9", 3)
        assert bot.state.runtime.snapshot().redirecting
        assert transport.disconnects == 1

    def test_port_masked(self, bot):
        bot.handle(encode("OnSendToServer", 0x10000 + 17091, 1, 2, "h|d|u", 0))
        assert bot.state.auth.snapshot()[0].port == 17091

    def test_short_server_data_dropped(self, bot, transport):
        assert bot.handle(encode("OnSendToServer", 17092, 1, 2, "host|door", 0)) is None
        assert transport.disconnects == 0
        assert not bot.state.runtime.snapshot().redirecting

    def test_reconnect_follows_redirect(self, bot, transport):
        bot.handle(encode("OnSendToServer", 17092, 1, 2, "10.0.0.2|d|u", 0))
        assert bot.on_disconnected()
        assert transport.connects == [("10.0.0.2", 17092)]
        assert bot.status() == "ConnectingToServer"


class TestItemChecksum:
    def test_match_enters_game(self, bot, transport, items_file):
        bot.state.runtime.set_redirecting(True)
        h = file_hash(items_file)
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, h)))
        assert transport.texts() == ["action|enter_game\n"]
        assert bot.state.phase.get() is ConnectionPhase.IN_GAME
        assert bot.item_info(2).name == "Dirt"
        assert not bot.state.runtime.snapshot().redirecting

    def test_mismatch_requests_refresh(self, bot, transport, items_file):
        h = file_hash(items_file) ^ 1
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, h)))
        assert transport.texts() == ["action|refresh_item_data\n"]
        assert bot.state.phase.get() is ConnectionPhase.FETCHING_SERVER_DATA
        assert bot.item_database().item_count == 0

    def test_missing_file_requests_refresh(self, bot, transport):
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, 1234)))
        assert transport.texts() == ["action|refresh_item_data\n"]

    def test_unloadable_file_requests_refresh(self, bot, transport):
        bot.config.items_path.write_text("not json")
        h = file_hash(bot.config.items_path)
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, h)))
        assert transport.texts() == ["action|refresh_item_data\n"]
        assert bot.state.phase.get() is ConnectionPhase.FETCHING_SERVER_DATA

    def test_malformed_export_requests_refresh(self, bot, transport):
        bot.config.items_path.write_text('{"items": {"2": ["not", "a", "dict"]}}')
        h = file_hash(bot.config.items_path)
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, h)))
        assert transport.texts() == ["action|refresh_item_data\n"]
        assert bot.state.phase.get() is ConnectionPhase.FETCHING_SERVER_DATA

    def test_top_level_array_requests_refresh(self, bot, transport):
        bot.config.items_path.write_text("[1, 2, 3]")
        h = file_hash(bot.config.items_path)
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, h)))
        assert transport.texts() == ["action|refresh_item_data\n"]

    def test_failing_loader_requests_refresh(self, bot, transport, items_file):
        def loader(path):
            raise RuntimeError("corrupt cache")

        bot.item_loader = loader
        h = file_hash(items_file)
        bot.handle(encode(LOGON, Value(VariantType.UNSIGNED, h)))
        bot.handle(encode("OnSetBux", 3))
        assert transport.texts() == ["action|refresh_item_data\n"]
        assert bot.state.inventory.snapshot().gems == 3

    def test_signed_hash_is_malformed(self, bot, transport):
        assert bot.handle(encode(LOGON, 5)) is None
        assert transport.texts() == []


class TestDialog:
    def test_notification(self, bot):
        seen = []
        bot.bus.subscribe("onDialogRequest", seen.append)
        bot.handle(encode("OnDialogRequest", "set_default_color|`o\nadd_label|hello"))
        assert seen == ["set_default_color|`o\nadd_label|hello"]

    def test_pending_handler_runs_once(self, bot):
        runs = []
        bot.set_dialog_handler(runs.append)
        bot.handle(encode("OnDialogRequest", "a"))
        bot.handle(encode("OnDialogRequest", "b"))
        assert runs == [bot]

    def test_gazette_dismissed(self, bot, transport):
        bot.handle(encode("OnDialogRequest", "add_image_button|Gazette banner"))
        assert transport.texts() == [
            "action|dialog_return\ndialog_name|gazette\nbuttonClicked|banner\n"
        ]


def test_world_select_menu(bot):
    from conftest import make_world

    bot.enter_world(make_world(["..", ".."]))
    bot.handle(_player_spawn(3))
    bot.handle(encode("OnRequestWorldSelectMenu"))
    assert not bot.is_in_world()
    assert len(bot.state.players) == 0
    assert bot.status() == "InGame"


def test_variant_tap(bot):
    seen = []
    bot.bus.subscribe("onVariant", seen.append)
    bot.handle(encode("OnSetBux", 5))
    assert seen == [{1: "OnSetBux", 2: 5}]


def test_variant_tap_skipped_without_subscribers(bot, monkeypatch):
    def boom(self):
        raise AssertionError("generic table built with nobody listening")

    monkeypatch.setattr(VariantList, "to_generic", boom)
    bot.handle(encode("OnSetBux", 5))
    assert bot.state.inventory.snapshot().gems == 5
