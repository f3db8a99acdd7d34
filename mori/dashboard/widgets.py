"""
Mori Dashboard — Panel Widgets

Four panels for the TUI dashboard:
1. EventPanel    — live server event log
2. PlayerPanel   — players in the current world
3. OutboundPanel — packets the session sent
4. SessionPanel  — phase, world, position, inventory, script log

Panels read session state with the non-blocking try_* readers. A subsystem
that is busy at refresh time is shown as "busy" and picked up on the next tick.
"""

from __future__ import annotations

import time

from rich.text import Text
from textual.containers import Vertical
from textual.widgets import DataTable, RichLog, Static

from mori.bot.session import Bot
from mori.data.state import to_tile
from mori.errors import ResourceUnavailable
from mori.net.transport import SentMessage
from mori.protocol.variant import VariantList


def _fmt_time(ts: float) -> str:
    return time.strftime("%H:%M:%S", time.localtime(ts))


def _fmt_elapsed(seconds: float) -> str:
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    if h:
        return f"{h}h{m:02d}m{s:02d}s"
    return f"{m}m{s:02d}s"


def _short(value, limit: int = 40) -> str:
    s = repr(value)
    return s if len(s) <= limit else s[:limit - 3] + "..."


_EVENT_COLORS: dict[str, str] = {
    "OnSendToServer": "magenta",
    "OnSuperMainStartAcceptLogonHrdxs47254722215a": "magenta",
    "OnSetPos": "green",
    "OnTalkBubble": "cyan",
    "OnConsoleMessage": "cyan",
    "OnSetBux": "yellow",
    "SetHasGrowID": "yellow",
    "OnSpawn": "bright_green",
    "OnRemove": "dim",
    "OnDialogRequest": "blue",
    "OnRequestWorldSelectMenu": "magenta",
}


# ---- 1. Event Panel ----

class EventPanel(Vertical):
    """Decoded server events as they are dispatched."""

    def compose(self):
        yield Static("", id="event-rate")
        yield RichLog(highlight=True, markup=True, max_lines=500, id="event-log")

    def log_event(self, vl: VariantList | None, size: int, bot: Bot) -> None:
        log: RichLog = self.query_one("#event-log", RichLog)
        rate_label: Static = self.query_one("#event-rate", Static)

        text = Text()
        text.append(f"[{_fmt_time(time.time())}] ", style="bright_black")
        if vl is None:
            text.append("<undecodable>", style="bold red")
            text.append(f" ({size}b)", style="bright_black")
        else:
            name = vl.values[0].to_native() if len(vl) else "?"
            color = _EVENT_COLORS.get(str(name), "white")
            text.append(str(name), style=f"bold {color}")
            text.append(f" ({size}b)", style="bright_black")
            args = [_short(v.to_native()) for v in list(vl)[1:6]]
            if args:
                text.append(" " + " ".join(args), style=color)
        log.write(text)

        d = bot.dispatcher
        rate_label.update(f" {d.handled} handled | {d.dropped} dropped")

    def clear_log(self) -> None:
        log: RichLog = self.query_one("#event-log", RichLog)
        log.clear()


# ---- 2. Player Panel ----

class PlayerPanel(Vertical):
    """Players in the current world."""

    def compose(self):
        yield Static("", id="player-summary")
        table = DataTable(id="player-table")
        table.cursor_type = "row"
        yield table

    def on_mount(self) -> None:
        table: DataTable = self.query_one("#player-table", DataTable)
        table.add_columns("Net ID", "Name", "User ID", "Country", "Tile", "Flags")

    def refresh_players(self, bot: Bot) -> None:
        summary: Static = self.query_one("#player-summary", Static)
        try:
            players = bot.state.players.try_snapshot()
        except ResourceUnavailable:
            summary.update(" Players: busy")
            return

        table: DataTable = self.query_one("#player-table", DataTable)
        table.clear()
        n_mods = sum(1 for p in players if p.is_moderator)
        summary.update(f" Players: {len(players)}" + (f" | {n_mods} moderator(s)" if n_mods else ""))

        for p in sorted(players, key=lambda p: p.net_id):
            flags = []
            if p.is_moderator:
                flags.append("MOD")
            if p.invisible:
                flags.append("INVIS")
            style = "bold red" if flags else ""
            x, y = p.position
            table.add_row(
                Text(str(p.net_id), style="bright_black"),
                Text(p.name, style=style or "green"),
                Text(str(p.user_id)),
                Text(p.country),
                Text(f"({to_tile(x)}, {to_tile(y)})"),
                Text(" ".join(flags), style=style),
                key=str(p.net_id),
            )


# ---- 3. Outbound Panel ----

class OutboundPanel(Vertical):
    """Messages handed to the transport."""

    def compose(self):
        yield Static("", id="outbound-count")
        yield RichLog(highlight=False, markup=False, max_lines=500, id="outbound-log")

    def log_sent(self, msg: SentMessage, total: int) -> None:
        log: RichLog = self.query_one("#outbound-log", RichLog)
        counter: Static = self.query_one("#outbound-count", Static)
        text = Text()
        text.append(f"[{_fmt_time(msg.timestamp)}] ", style="bright_black")
        text.append(repr(msg), style="yellow" if msg.text is not None else "cyan")
        if not msg.reliable:
            text.append(" (unreliable)", style="dim")
        log.write(text)
        counter.update(f" Sent: {total}")

    def clear_log(self) -> None:
        log: RichLog = self.query_one("#outbound-log", RichLog)
        log.clear()


# ---- 4. Session Panel ----

class SessionPanel(Vertical):
    """Session overview."""

    def compose(self):
        yield Static("Waiting for data...", id="session-stats")
        yield RichLog(highlight=False, markup=False, max_lines=200, id="session-log")

    def refresh_session(self, bot: Bot, started: float) -> None:
        stats: Static = self.query_one("#session-stats", Static)
        state = bot.state

        def read(fn, fmt):
            try:
                return fmt(fn())
            except ResourceUnavailable:
                return "busy"

        lines = [
            "Mori Session",
            "=" * 40,
            "",
            f"Uptime:            {_fmt_elapsed(time.time() - started)}",
            f"Phase:             {read(state.phase.try_get, lambda p: p.value)}",
            f"Display Name:      {read(state.auth.try_snapshot, lambda a: a[1].display_name or '-')}",
            f"Server:            {read(state.auth.try_snapshot, lambda a: f'{a[0].host}:{a[0].port}' if a[0].host else '-')}",
            f"Net ID / User ID:  {read(state.runtime.try_snapshot, lambda r: f'{r.net_id} / {r.user_id}')}",
            f"Redirecting:       {read(state.runtime.try_snapshot, lambda r: 'yes' if r.redirecting else 'no')}",
            "",
            f"World:             {read(state.world.try_snapshot, lambda w: f'{w.name} ({w.width}x{w.height})')}",
            f"Position:          {read(state.position.try_get, lambda p: f'({p[0]:.1f}, {p[1]:.1f}) tile ({to_tile(p[0])}, {to_tile(p[1])})')}",
            f"Gems:              {read(state.inventory.try_snapshot, lambda i: i.gems)}",
            f"Inventory:         {read(state.inventory.try_snapshot, lambda i: f'{i.count}/{i.size} slots')}",
            f"Items Known:       {read(state.items.try_get, lambda db: db.item_count)}",
            "",
            f"Events:            {bot.dispatcher.handled} handled, {bot.dispatcher.dropped} dropped",
            f"Listeners:         {bot.bus.count()} ({', '.join(bot.bus.events()) or 'none'})",
            f"Callback Errors:   {bot.bus.error_count}",
            f"Actions:           punch={bot.stats.punches} place={bot.stats.places} "
            f"steps={bot.stats.steps} collected={bot.stats.items_collected}",
        ]
        stats.update("\n".join(lines))

        try:
            logs = state.runtime.try_snapshot().logs
        except ResourceUnavailable:
            return
        log: RichLog = self.query_one("#session-log", RichLog)
        log.clear()
        for line in logs[-50:]:
            log.write(line)
