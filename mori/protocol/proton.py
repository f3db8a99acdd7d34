"""
Proton SDK string hash.

The server advertises the expected item-data checksum as this hash computed
over the whole file. acc starts at 0x55555555 and for each byte:

    acc = (acc >> 27) + (acc << 5) + byte      (mod 2**32)
"""

from __future__ import annotations

from pathlib import Path

_MASK = 0xFFFFFFFF


def proton_hash(data: bytes, length: int | None = None) -> int:
    """Hash the first `length` bytes (all of them when None)."""
    if length is None:
        length = len(data)
    acc = 0x55555555
    for b in data[:length]:
        acc = ((acc >> 27) + (acc << 5) + b) & _MASK
    return acc


def file_hash(path: str | Path) -> int | None:
    """Hash a file on disk, or None if it cannot be read."""
    try:
        data = Path(path).read_bytes()
    except OSError:
        return None
    return proton_hash(data)
