"""
Mori — Replay Entry Point

Feeds a recorded capture through a live Bot session, optionally with a Lua
script attached, and logs every packet the session would have sent.

Usage:
    python -m mori.bot.main captures/farm_run.json
    python -m mori.bot.main captures/farm_run.json --script farm.lua
    python -m mori.bot.main captures/farm_run.json --items items.json --speed 4
    python -m mori.bot.main captures/farm_run.json --speed 0 -v     # no delays
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from mori.bot.config import Automation, BotConfig, DelayConfig, PrivateServerConfig
from mori.bot.session import Bot
from mori.errors import ScriptError
from mori.net.capture import FrameCapture
from mori.net.transport import RecordingTransport, SentMessage

log = logging.getLogger("mori")

STATUS_INTERVAL = 3.0


def build_config(args: argparse.Namespace) -> BotConfig:
    return BotConfig(
        name=args.name,
        items_path=Path(args.items),
        delays=DelayConfig(
            findpath=args.findpath_delay,
            punch=args.punch_delay,
            place=args.place_delay,
        ),
        automation=Automation(
            auto_collect=not args.no_auto_collect,
            auto_reconnect=not args.no_auto_reconnect,
            leave_on_moderator=not args.stay_on_moderator,
        ),
        server=PrivateServerConfig.simple(args.server, args.port),
    )


def replay(bot: Bot, transport: RecordingTransport, capture: FrameCapture, speed: float) -> None:
    """Feed every frame to the bot, following disconnects like a live transport would."""
    last_status = 0.0
    for frame in capture.replay(speed=speed):
        bot.handle(frame.payload)
        if not transport.connected:
            bot.on_disconnected()

        now = time.time()
        if (now - last_status) >= STATUS_INTERVAL:
            print(f"\r  {bot.status_line()}", end="", flush=True)
            last_status = now
    print()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Mori capture replay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("capture", help="Capture JSON file")
    parser.add_argument("--script", type=str, default=None,
                        help="Lua script to load before replaying")
    parser.add_argument("--items", type=str, default="items.dat",
                        help="Cached item database checked against the server hash")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Replay speed multiplier (0 = as fast as possible)")
    parser.add_argument("--name", type=str, default="bot", help="Session name")
    parser.add_argument("--server", type=str, default="127.0.0.1",
                        help="Home server for auto-reconnect")
    parser.add_argument("--port", type=int, default=17091)
    parser.add_argument("--findpath-delay", type=int, default=150, help="ms")
    parser.add_argument("--punch-delay", type=int, default=100, help="ms")
    parser.add_argument("--place-delay", type=int, default=100, help="ms")
    parser.add_argument("--no-auto-collect", action="store_true")
    parser.add_argument("--no-auto-reconnect", action="store_true")
    parser.add_argument("--stay-on-moderator", action="store_true",
                        help="Do not leave the world when a moderator/invisible player spawns")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Do not log outbound packets")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        capture = FrameCapture.load(args.capture)
    except (OSError, ValueError) as e:
        log.error("Cannot load capture %s: %s", args.capture, e)
        return 1
    log.info("Loaded capture %s: %d frames, %d markers",
             capture.name, len(capture.frames), len(capture.markers))

    transport = RecordingTransport()
    if not args.quiet:
        transport.on_send(lambda msg: log.info("→ %r", msg))
    bot = Bot(transport, build_config(args))

    if args.script:
        from mori.bot.scripting import ScriptHost

        host = ScriptHost(bot)
        try:
            host.run_file(args.script)
        except (OSError, ScriptError) as e:
            log.error("Script failed: %s", e)
            return 1

    log.info("Replaying at %s...", f"{args.speed:g}x" if args.speed > 0 else "full speed")
    try:
        replay(bot, transport, capture, args.speed)
    except KeyboardInterrupt:
        print()
        log.info("Replay stopped by user")

    _print_summary(bot, transport.sent)
    return 0


def _print_summary(bot: Bot, sent: list[SentMessage]) -> None:
    d = bot.dispatcher
    log.info("Events: handled=%d dropped=%d", d.handled, d.dropped)
    log.info("Sent: %d messages (punch=%d place=%d steps=%d collected=%d)",
             len(sent), bot.stats.punches, bot.stats.places,
             bot.stats.steps, bot.stats.items_collected)
    log.info("Final: %s", bot.status_line())
    logs = bot.state.runtime.snapshot().logs
    if logs:
        log.info("Session log (last %d):", min(len(logs), 10))
        for line in logs[-10:]:
            log.info("  %s", line)


if __name__ == "__main__":
    sys.exit(main())
