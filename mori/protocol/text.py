"""
Pipe-delimited text blocks.

Spawn/remove events carry their payload as newline-separated records:

    spawn|avatar
    netID|3
    posXY|1440|736

The first segment is the key, the rest (re-joined with "|") is the value.
The last occurrence of a duplicate key wins.
"""

from __future__ import annotations

from mori.errors import ProtocolShapeError


def parse_text_block(text: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for line in text.splitlines():
        parts = line.rstrip().split("|")
        if len(parts) < 2:
            continue
        result[parts[0]] = "|".join(parts[1:])
    return result


def require(block: dict[str, str], key: str) -> str:
    try:
        return block[key]
    except KeyError:
        raise ProtocolShapeError(f"missing '{key}' in text block") from None


def require_int(block: dict[str, str], key: str) -> int:
    raw = require(block, key)
    try:
        return int(raw.strip())
    except ValueError:
        raise ProtocolShapeError(f"'{key}' is not an integer: {raw!r}") from None


def optional_int(block: dict[str, str], key: str, default: int = 0) -> int:
    if key not in block:
        return default
    return require_int(block, key)


def parse_vec2(raw: str) -> tuple[float, float]:
    """Parse "x|y" (as found in posXY) into floats."""
    parts = [p.strip() for p in raw.split("|")]
    if len(parts) < 2:
        raise ProtocolShapeError(f"expected 'x|y', got {raw!r}")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        raise ProtocolShapeError(f"bad coordinates {raw!r}") from None
