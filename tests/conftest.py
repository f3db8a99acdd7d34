"""Shared fixtures for Mori tests."""

import json

import pytest

from mori.bot.config import BotConfig
from mori.bot.session import Bot
from mori.data.state import Tile, World
from mori.net.transport import RecordingTransport


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sleeps() -> list[float]:
    """Every delay the bot asked for, in seconds."""
    return []


@pytest.fixture
def bot(transport, sleeps, tmp_path) -> Bot:
    """A bot on a recording transport that never actually sleeps."""
    config = BotConfig(name="test", items_path=tmp_path / "items.json")
    return Bot(transport, config, sleep=sleeps.append)


@pytest.fixture
def items_file(tmp_path):
    """A small item export at the bot's items_path."""
    path = tmp_path / "items.json"
    path.write_text(json.dumps({
        "version": 19,
        "items": {
            "0": {"name": "Blank"},
            "2": {"name": "Dirt", "rarity": 1, "collision_type": 1, "action_type": 17},
            "8": {"name": "Bedrock", "rarity": 1, "collision_type": 1},
            "18": "Fist",
            "242": {"name": "World Lock", "rarity": 1, "collision_type": 1, "action_type": 3},
        },
    }))
    return path


def make_world(rows: list[str], name: str = "TESTWORLD") -> World:
    """Build a world from strings: '#' is dirt (id 2), anything else is air."""
    height = len(rows)
    width = len(rows[0])
    tiles = []
    for y, row in enumerate(rows):
        for x, ch in enumerate(row):
            tiles.append(Tile(x=x, y=y, foreground=2 if ch == "#" else 0))
    return World(name=name, width=width, height=height, tiles=tiles)
