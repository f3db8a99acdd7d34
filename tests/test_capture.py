"""Tests for frame captures, markers and replay."""

import json

from mori.bot.main import main, replay
from mori.net.capture import FrameCapture, Marker
from mori.net.transport import RecordingTransport
from mori.protocol.variant import encode


def _capture() -> FrameCapture:
    cap = FrameCapture(name="test")
    cap.record(encode("OnSetBux", 10), ts=1000.0)
    cap.record(encode("OnSetPos", (64.0, 32.0)), ts=1000.5)
    cap.record(encode("OnTalkBubble", 3, "hi"), ts=1002.0)
    return cap


def test_record_sets_start_time():
    cap = _capture()
    assert cap.start_time == 1000.0
    assert [f.function_name for f in cap.frames] == ["OnSetBux", "OnSetPos", "OnTalkBubble"]


def test_undecodable_frame_name():
    cap = FrameCapture(name="bad")
    cap.record(b"\x03")
    assert cap.frames[0].function_name == "?"


def test_mark():
    cap = _capture()
    cap.mark("entered world")
    assert cap.markers[0].label == "entered world"
    assert cap.markers[0].frame_index == 3


def test_frames_between_markers():
    cap = FrameCapture(name="test")
    for i in range(20):
        cap.record(bytes([0]), ts=1000.0 + i)
        if i == 5:
            cap.markers.append(Marker(1005.0, "action1", len(cap.frames)))
        if i == 12:
            cap.markers.append(Marker(1012.0, "action2", len(cap.frames)))

    assert len(cap.frames_between_markers(0)) == 7  # frames 6-12
    assert len(cap.frames_between_markers(1)) == 7  # frames 13-19
    assert cap.frames_between_markers(5) == []


def test_save_load(tmp_path):
    cap = _capture()
    cap.mark("done")
    path = cap.save(tmp_path)
    assert path.name == "test.json"

    data = json.loads(path.read_text())
    assert data["frame_count"] == 3

    loaded = FrameCapture.load(path)
    assert loaded.name == "test"
    assert [f.payload for f in loaded.frames] == [f.payload for f in cap.frames]
    assert loaded.markers[0].label == "done"
    assert loaded.start_time == 1000.0


def test_replay_timing():
    sleeps = []
    frames = list(_capture().replay(speed=2.0, sleep=sleeps.append))
    assert len(frames) == 3
    assert sleeps == [0.25, 0.75]


def test_replay_unbounded():
    sleeps = []
    list(_capture().replay(speed=0, sleep=sleeps.append))
    assert sleeps == []


def test_summary():
    text = _capture().summary()
    assert "Frames: 3" in text
    assert "OnSetBux" in text


def test_replay_into_bot(bot, transport):
    replay(bot, transport, _capture(), speed=0)
    assert bot.state.inventory.snapshot().gems == 10
    assert bot.state.position.get() == (64.0, 32.0)
    assert bot.dispatcher.handled == 3


def test_replay_follows_disconnect(bot, transport):
    cap = FrameCapture(name="redirect")
    cap.record(encode("OnSendToServer", 17092, 1, 2, "10.0.0.2|d|u", 0))
    replay(bot, transport, cap, speed=0)
    assert transport.connects == [("10.0.0.2", 17092)]
    assert transport.connected


def test_cli(tmp_path, capsys):
    path = _capture().save(tmp_path)
    script = tmp_path / "greet.lua"
    script.write_text('getBot():on("onChat", function(n, t) getBot():say("re: " .. t) end)')
    rc = main([str(path), "--speed", "0", "--script", str(script),
               "--items", str(tmp_path / "missing.json"), "-q"])
    assert rc == 0


def test_cli_missing_capture(tmp_path):
    assert main([str(tmp_path / "nope.json"), "-q"]) == 1


def test_recording_transport_callbacks():
    transport = RecordingTransport()
    seen = []
    transport.on_send(seen.append)
    transport.on_send(lambda msg: 1 / 0)
    transport.send(b"\x02\x00\x00\x00hi\x00")
    assert seen[0].text == "hi"
    assert len(transport.sent) == 1
    transport.clear()
    assert transport.sent == []
