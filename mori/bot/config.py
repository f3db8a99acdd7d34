"""
Mori — Bot Configuration

Plain dataclasses; the CLI fills them from argparse flags.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class DelayConfig:
    """Minimum spacing between repeated actions (milliseconds)."""
    findpath: int = 150
    punch: int = 100
    place: int = 100


@dataclass
class Automation:
    auto_collect: bool = True
    auto_reconnect: bool = True
    # leave the world when a moderator or invisible player spawns
    leave_on_moderator: bool = True
    # pickup radius for collect(), in tiles
    collect_range: int = 3


@dataclass
class PrivateServerConfig:
    """Connection target for a private server."""
    server_ip: str = "127.0.0.1"
    server_port: int = 17091

    @classmethod
    def simple(cls, host: str, port: int = 17091) -> PrivateServerConfig:
        return cls(server_ip=host, server_port=port)


@dataclass
class BotConfig:
    name: str = "bot"
    # cached item database; its Proton hash is checked against the server's
    items_path: Path = Path("items.dat")
    inventory_size: int = 16
    delays: DelayConfig = field(default_factory=DelayConfig)
    automation: Automation = field(default_factory=Automation)
    server: PrivateServerConfig = field(default_factory=PrivateServerConfig)
