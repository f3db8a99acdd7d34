"""
Mori — Transport Interface

The reliable-UDP layer (handshake, encryption, resends) lives outside this
package. The session only needs something it can hand outbound buffers to:

    transport.send(data, reliable=True)
    transport.disconnect()
    transport.connect(host, port)

RecordingTransport keeps every outbound message in memory. The replay CLI,
the dashboard and the tests use it in place of a live connection.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from mori.protocol.packets import GAME_PACKET_SIZE, NetMessage, OutboundPacket, decode_message

log = logging.getLogger(__name__)


class Transport(Protocol):
    def send(self, data: bytes, reliable: bool = True) -> None: ...

    def disconnect(self) -> None: ...

    def connect(self, host: str, port: int) -> None: ...


@dataclass
class SentMessage:
    """One outbound buffer as handed to the transport."""
    timestamp: float
    data: bytes
    reliable: bool = True

    @property
    def msg_type(self) -> NetMessage:
        return decode_message(self.data)[0]

    @property
    def body(self) -> bytes:
        return decode_message(self.data)[1]

    @property
    def text(self) -> str | None:
        """Body of a text message without its NUL terminator, else None."""
        if self.msg_type not in (NetMessage.GENERIC_TEXT, NetMessage.GAME_MESSAGE):
            return None
        return self.body.rstrip(b"\x00").decode("utf-8", errors="replace")

    @property
    def packet(self) -> OutboundPacket | None:
        if self.msg_type is not NetMessage.GAME_PACKET or len(self.body) < GAME_PACKET_SIZE:
            return None
        return OutboundPacket.unpack(self.body)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "type": self.msg_type.name,
            "reliable": self.reliable,
            "payload_hex": self.data.hex(),
        }

    def __repr__(self) -> str:
        text = self.text
        if text is not None:
            return f"[{self.msg_type.name}] {text!r}"
        pkt = self.packet
        if pkt is not None:
            return (
                f"[GAME_PACKET type={pkt.type} value={pkt.value} "
                f"int=({pkt.int_x},{pkt.int_y}) vec=({pkt.vector_x:.1f},{pkt.vector_y:.1f})]"
            )
        return f"[{self.msg_type.name}] ({len(self.data)} bytes)"


class RecordingTransport:
    """In-memory transport: records sends, counts connects/disconnects."""

    def __init__(self):
        self.sent: list[SentMessage] = []
        self.connects: list[tuple[str, int]] = []
        self.disconnects = 0
        self.connected = True
        self.callbacks: list[Callable[[SentMessage], None]] = []
        self._lock = threading.Lock()

    def on_send(self, callback: Callable[[SentMessage], None]) -> None:
        self.callbacks.append(callback)

    def send(self, data: bytes, reliable: bool = True) -> None:
        msg = SentMessage(timestamp=time.time(), data=bytes(data), reliable=reliable)
        with self._lock:
            self.sent.append(msg)
        for cb in self.callbacks:
            try:
                cb(msg)
            except Exception as e:
                log.warning("send callback failed: %s", e)

    def disconnect(self) -> None:
        with self._lock:
            self.disconnects += 1
            self.connected = False

    def connect(self, host: str, port: int) -> None:
        with self._lock:
            self.connects.append((host, port))
            self.connected = True

    def texts(self) -> list[str]:
        with self._lock:
            return [m.text for m in self.sent if m.text is not None]

    def packets(self) -> list[OutboundPacket]:
        with self._lock:
            return [m.packet for m in self.sent if m.packet is not None]

    def clear(self) -> None:
        with self._lock:
            self.sent.clear()
