"""
Mori Dashboard — Textual TUI App

Terminal dashboard over a Bot session. A capture is replayed into the session
in a worker thread (optionally with a Lua script attached); the panels poll
the session state once a second with the non-blocking readers.

Usage:
    python -m mori.dashboard.app captures/farm_run.json
    python -m mori.dashboard.app captures/farm_run.json --script farm.lua --items items.json

Replay speed controls:
  [ / ] — decrease / increase speed (1x, 2x, 5x, 10x, MAX)
  x     — export a session snapshot to JSON
"""

from __future__ import annotations

import argparse
import json
import threading
import time
from datetime import datetime
from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.css.query import NoMatches
from textual.timer import Timer
from textual.widgets import Footer, Static, TabbedContent, TabPane

from mori.bot.config import BotConfig
from mori.bot.session import Bot
from mori.dashboard.widgets import EventPanel, OutboundPanel, PlayerPanel, SessionPanel
from mori.errors import DecodeError, ScriptError
from mori.net.capture import Frame, FrameCapture
from mori.net.transport import RecordingTransport, SentMessage
from mori.protocol import variant

# Replay speed presets: (label, multiplier)
# multiplier=0 means unbounded (no sleep)
SPEED_PRESETS = [
    ("1x", 1.0),
    ("2x", 2.0),
    ("5x", 5.0),
    ("10x", 10.0),
    ("MAX", 0.0),
]


class MoriDashboard(App):
    """Mori session dashboard."""

    CSS = """
    #header-bar {
        height: 1;
        background: $boost;
    }
    #status-label {
        width: 1fr;
        padding: 0 1;
    }
    #rate-label {
        width: auto;
        padding: 0 1;
        color: $text-muted;
    }
    #session-stats {
        height: auto;
        padding: 1 2;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("e", "switch_tab('events')", "Events", show=True),
        Binding("l", "switch_tab('players')", "Players", show=True),
        Binding("o", "switch_tab('outbound')", "Outbound", show=True),
        Binding("s", "switch_tab('session')", "Session", show=True),
        Binding("p", "toggle_pause", "Pause"),
        Binding("c", "clear_log", "Clear"),
        Binding("left_square_bracket", "speed_down", "Slower"),
        Binding("right_square_bracket", "speed_up", "Faster"),
        Binding("x", "export_stats", "Export"),
    ]

    def __init__(
        self,
        capture_path: str,
        script_path: str | None = None,
        config: BotConfig | None = None,
    ):
        super().__init__()
        self._capture_path = capture_path
        self._script_path = script_path
        self.transport = RecordingTransport()
        self.bot = Bot(self.transport, config)
        self.transport.on_send(self._on_sent)
        self._started = time.time()
        self._paused = False
        self._refresh_timer: Timer | None = None
        self._speed_index = 0
        self._replay_done = False
        self._frames_done = 0
        self._frames_total = 0

    @property
    def _speed_label(self) -> str:
        return SPEED_PRESETS[self._speed_index][0]

    @property
    def _speed_mult(self) -> float:
        return SPEED_PRESETS[self._speed_index][1]

    def compose(self) -> ComposeResult:
        with Horizontal(id="header-bar"):
            yield Static("Mori", id="status-label")
            yield Static("0/0 frames", id="rate-label")
        with TabbedContent(id="tabs"):
            with TabPane("Events", id="events"):
                yield EventPanel()
            with TabPane("Players", id="players"):
                yield PlayerPanel()
            with TabPane("Outbound", id="outbound"):
                yield OutboundPanel()
            with TabPane("Session", id="session"):
                yield SessionPanel()
        yield Footer()

    def on_mount(self) -> None:
        self._update_header()
        self._refresh_timer = self.set_interval(1.0, self._periodic_refresh)
        thread = threading.Thread(target=self._run_replay, daemon=True)
        thread.start()

    def _update_header(self) -> None:
        status: Static = self.query_one("#status-label", Static)
        rate_label: Static = self.query_one("#rate-label", Static)

        done_tag = " DONE" if self._replay_done else ""
        paused = " [PAUSED]" if self._paused else ""
        status.update(f"Mori | {self.bot.config.name} | REPLAY [{self._speed_label}]{done_tag}{paused}")
        rate_label.update(f"{self._frames_done}/{self._frames_total} frames | {len(self.transport.sent)} sent")

    # ---- Replay ----

    def _run_replay(self) -> None:
        path = Path(self._capture_path)
        if not path.exists():
            self.call_from_thread(self.notify, f"File not found: {path}", severity="error")
            return

        try:
            capture = FrameCapture.load(path)
        except ValueError as e:
            self.call_from_thread(self.notify, f"Bad capture: {e}", severity="error")
            return
        if not capture.frames:
            self.call_from_thread(self.notify, "No frames in capture", severity="error")
            return
        self._frames_total = len(capture.frames)

        if self._script_path:
            from mori.bot.scripting import ScriptHost

            try:
                ScriptHost(self.bot).run_file(self._script_path)
            except (OSError, ScriptError) as e:
                self.call_from_thread(self.notify, f"Script failed: {e}", severity="error")
                return

        self.call_from_thread(
            self.notify,
            f"Replaying {len(capture.frames)} frames from {path.name}",
        )

        frames = capture.frames
        for i, frame in enumerate(frames):
            while self._paused:
                time.sleep(0.1)

            self._feed(frame)

            if i + 1 < len(frames):
                gap = frames[i + 1].timestamp - frame.timestamp
                mult = self._speed_mult
                if mult > 0 and gap > 0:
                    # Scale by speed, cap long idle gaps
                    scaled = min(gap / mult, 0.5)
                    if scaled > 0.001:
                        time.sleep(scaled)

        self._replay_done = True
        self.call_from_thread(self._update_header)
        self.call_from_thread(self.notify, "Replay complete")

    def _feed(self, frame: Frame) -> None:
        try:
            vl = variant.decode(frame.payload)
        except DecodeError:
            vl = None
        self.bot.handle(frame.payload)
        if not self.transport.connected:
            self.bot.on_disconnected()
        self._frames_done += 1
        self.call_from_thread(self._log_event, vl, frame.size)

    def _on_sent(self, msg: SentMessage) -> None:
        # Sends come from the replay thread or a bot worker, never the UI thread
        self.call_from_thread(self._log_sent, msg, len(self.transport.sent))

    # ---- UI updates ----

    def _log_event(self, vl: variant.VariantList | None, size: int) -> None:
        try:
            panel: EventPanel = self.query_one(EventPanel)
        except NoMatches:
            return
        panel.log_event(vl, size, self.bot)

    def _log_sent(self, msg: SentMessage, total: int) -> None:
        try:
            panel: OutboundPanel = self.query_one(OutboundPanel)
        except NoMatches:
            return
        panel.log_sent(msg, total)

    def _periodic_refresh(self) -> None:
        """Refresh the active tab."""
        self._update_header()

        tabs: TabbedContent = self.query_one("#tabs", TabbedContent)
        active = tabs.active

        try:
            if active == "players":
                self.query_one(PlayerPanel).refresh_players(self.bot)
            elif active == "session":
                self.query_one(SessionPanel).refresh_session(self.bot, self._started)
        except NoMatches:
            pass

    # ---- Actions ----

    def action_switch_tab(self, tab_id: str) -> None:
        tabs: TabbedContent = self.query_one("#tabs", TabbedContent)
        tabs.active = tab_id

    def action_toggle_pause(self) -> None:
        self._paused = not self._paused
        self._update_header()
        self.notify(f"{'Paused' if self._paused else 'Resumed'}")

    def action_clear_log(self) -> None:
        tabs: TabbedContent = self.query_one("#tabs", TabbedContent)
        if tabs.active == "outbound":
            self.query_one(OutboundPanel).clear_log()
        else:
            self.query_one(EventPanel).clear_log()

    def action_speed_up(self) -> None:
        if self._speed_index < len(SPEED_PRESETS) - 1:
            self._speed_index += 1
            self._update_header()
            self.notify(f"Speed: {self._speed_label}")

    def action_speed_down(self) -> None:
        if self._speed_index > 0:
            self._speed_index -= 1
            self._update_header()
            self.notify(f"Speed: {self._speed_label}")

    def action_export_stats(self) -> None:
        """Export a session snapshot to a JSON file."""
        export = build_export(self.bot, self.transport)
        out_dir = Path("data")
        out_dir.mkdir(exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_path = out_dir / f"export_{ts}.json"
        out_path.write_text(json.dumps(export, indent=2, default=str))
        self.notify(f"Exported to {out_path}")


def build_export(bot: Bot, transport: RecordingTransport) -> dict:
    """Session snapshot as a JSON-able dict. Uses the blocking readers."""
    state = bot.state
    server, login = state.auth.snapshot()
    world = state.world.snapshot()
    inv = state.inventory.snapshot()
    rt = state.runtime.snapshot()
    x, y = state.position.get()
    return {
        "exported_at": datetime.now().isoformat(),
        "name": bot.config.name,
        "status": bot.status(),
        "server": {"host": server.host, "port": server.port},
        "display_name": login.display_name,
        "net_id": rt.net_id,
        "user_id": rt.user_id,
        "position": {"x": x, "y": y},
        "world": {"name": world.name, "width": world.width, "height": world.height},
        "players": [p.to_dict() for p in state.players.snapshot()],
        "inventory": {
            "gems": inv.gems,
            "size": inv.size,
            "items": {str(k): v for k, v in sorted(inv.items.items())},
        },
        "events": {"handled": bot.dispatcher.handled, "dropped": bot.dispatcher.dropped},
        "sent": [m.to_dict() for m in transport.sent],
        "logs": list(rt.logs),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Mori Dashboard")
    parser.add_argument("capture", help="Capture JSON file to replay")
    parser.add_argument("--script", help="Lua script to attach to the session")
    parser.add_argument("--items", default="items.dat",
                        help="Cached item database checked against the server hash")
    parser.add_argument("--name", default="bot", help="Session name")
    args = parser.parse_args()

    config = BotConfig(name=args.name, items_path=Path(args.items))
    app = MoriDashboard(args.capture, script_path=args.script, config=config)
    app.run()


if __name__ == "__main__":
    main()
