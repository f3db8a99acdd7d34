"""
Mori — Outbound Packet Structures

Everything the client sends is a message: [type:u32le][body].

  - text messages (GENERIC_TEXT, GAME_MESSAGE): UTF-8 "key|value" lines + NUL
  - game packets (GAME_PACKET): the fixed 56-byte struct below, optionally
    followed by extended data

The struct layout is a compatibility contract with the live server:

    off  size  field
    0    1     type
    1    1     object_type
    2    1     jump_count
    3    1     animation_type
    4    4     net_id              u32
    8    4     target_net_id       i32
    12   4     flags               u32 bitfield
    16   4     float_variable      f32
    20   4     value               u32
    24   8     vector_x, vector_y  f32 x2
    32   8     vector_x2, vector_y2 f32 x2
    40   4     particle_rotation   f32
    44   8     int_x, int_y        i32 x2
    52   4     extended_data_length u32
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields, replace
from enum import IntEnum, IntFlag

GAME_PACKET_STRUCT = struct.Struct("<BBBBIiIfIfffffiiI")
GAME_PACKET_SIZE = GAME_PACKET_STRUCT.size  # 56


def _i32(value: int) -> int:
    """Wrap into signed 32-bit range, as a C cast would."""
    return ((int(value) + 0x80000000) & 0xFFFFFFFF) - 0x80000000


class NetMessage(IntEnum):
    UNKNOWN = 0
    SERVER_HELLO = 1
    GENERIC_TEXT = 2
    GAME_MESSAGE = 3
    GAME_PACKET = 4
    ERROR = 5
    TRACK = 6
    CLIENT_LOG_REQUEST = 7
    CLIENT_LOG_RESPONSE = 8

    @classmethod
    def from_int(cls, value: int) -> NetMessage:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class GamePacketType(IntEnum):
    STATE = 0
    CALL_FUNCTION = 1
    UPDATE_STATUS = 2
    TILE_CHANGE_REQUEST = 3
    SEND_MAP_DATA = 4
    SEND_TILE_UPDATE_DATA = 5
    SEND_TILE_UPDATE_DATA_MULTIPLE = 6
    TILE_ACTIVATE_REQUEST = 7
    TILE_APPLY_DAMAGE = 8
    SEND_INVENTORY_STATE = 9
    ITEM_ACTIVATE_REQUEST = 10
    ITEM_ACTIVATE_OBJECT_REQUEST = 11
    SEND_TILE_TREE_STATE = 12
    MODIFY_ITEM_INVENTORY = 13
    ITEM_CHANGE_OBJECT = 14
    SEND_LOCK = 15
    SEND_ITEM_DATABASE_DATA = 16
    SEND_PARTICLE_EFFECT = 17
    SET_ICON_STATE = 18
    ITEM_EFFECT = 19
    SET_CHARACTER_STATE = 20
    PING_REPLY = 21
    PING_REQUEST = 22
    GOT_PUNCHED = 23
    APP_CHECK_RESPONSE = 24
    APP_INTEGRITY_FAIL = 25
    DISCONNECT = 26
    BATTLE_JOIN = 27
    BATTLE_EVENT = 28
    USE_DOOR = 29
    SEND_PARENTAL = 30
    GONE_FISHIN = 31
    STEAM = 32
    PET_BATTLE = 33
    NPC = 34
    SPECIAL = 35
    SEND_PARTICLE_EFFECT_V2 = 36
    ACTIVE_ARROW_TO_ITEM = 37
    SELECT_TILE_INDEX = 38
    SEND_PLAYER_TRIBUTE_DATA = 39


class PacketFlag(IntFlag):
    NONE = 0
    WALK = 1 << 0
    UNK_2 = 1 << 1
    SPAWN_RELATED = 1 << 2
    EXTENDED = 1 << 3
    FACING_LEFT = 1 << 4
    STANDING = 1 << 5
    FIRE_DAMAGE = 1 << 6
    JUMP = 1 << 7
    GOT_KILLED = 1 << 8
    PUNCH = 1 << 9
    PLACE = 1 << 10
    TILE_CHANGE = 1 << 11
    GOT_PUNCHED = 1 << 12
    RESPAWN = 1 << 13
    OBJECT_COLLECT = 1 << 14
    TRAMPOLINE = 1 << 15
    DAMAGE = 1 << 16
    SLIDE = 1 << 17
    PARASOL = 1 << 18
    UNK_GRAVITY_RELATED = 1 << 19
    SWIM = 1 << 20
    WALL_HANG = 1 << 21
    POWER_UP_PUNCH_START = 1 << 22
    POWER_UP_PUNCH_END = 1 << 23
    UNK_TILE_CHANGE = 1 << 24
    HAY_CART_RELATED = 1 << 25
    ACID_RELATED_DAMAGE = 1 << 26
    UNK_3 = 1 << 27
    ACID_DAMAGE = 1 << 28


@dataclass
class OutboundPacket:
    """One structured game packet. Field order matches GAME_PACKET_STRUCT."""
    type: int = GamePacketType.STATE
    object_type: int = 0
    jump_count: int = 0
    animation_type: int = 0
    net_id: int = 0
    target_net_id: int = 0
    flags: int = 0
    float_variable: float = 0.0
    value: int = 0
    vector_x: float = 0.0
    vector_y: float = 0.0
    vector_x2: float = 0.0
    vector_y2: float = 0.0
    particle_rotation: float = 0.0
    int_x: int = 0
    int_y: int = 0
    extended_data_length: int = 0

    @classmethod
    def from_packet(cls, other: OutboundPacket) -> OutboundPacket:
        """Field-by-field copy; the result shares nothing with `other`."""
        return cls(**{f.name: getattr(other, f.name) for f in fields(cls)})

    def copy(self) -> OutboundPacket:
        return replace(self)

    def pack(self) -> bytes:
        return GAME_PACKET_STRUCT.pack(
            int(self.type) & 0xFF,
            self.object_type & 0xFF,
            self.jump_count & 0xFF,
            self.animation_type & 0xFF,
            self.net_id & 0xFFFFFFFF,
            _i32(self.target_net_id),
            int(self.flags) & 0xFFFFFFFF,
            self.float_variable,
            self.value & 0xFFFFFFFF,
            self.vector_x,
            self.vector_y,
            self.vector_x2,
            self.vector_y2,
            self.particle_rotation,
            _i32(self.int_x),
            _i32(self.int_y),
            self.extended_data_length & 0xFFFFFFFF,
        )

    @classmethod
    def unpack(cls, data: bytes) -> OutboundPacket:
        if len(data) < GAME_PACKET_SIZE:
            raise ValueError(f"game packet needs {GAME_PACKET_SIZE} bytes, got {len(data)}")
        return cls(*GAME_PACKET_STRUCT.unpack_from(data))


def encode_text_message(msg_type: NetMessage | int, text: str | bytes) -> bytes:
    """[type:u32le][text][NUL]"""
    body = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    return struct.pack("<I", int(msg_type)) + body + b"\x00"


def encode_game_message(pkt: OutboundPacket, extended: bytes = b"") -> bytes:
    """[GAME_PACKET:u32le][56-byte struct][extended data]"""
    if extended and pkt.extended_data_length != len(extended):
        pkt = replace(pkt, extended_data_length=len(extended), flags=int(pkt.flags) | PacketFlag.EXTENDED)
    return struct.pack("<I", NetMessage.GAME_PACKET) + pkt.pack() + extended


def decode_message(data: bytes) -> tuple[NetMessage, bytes]:
    """Split an outbound message back into (type, body). Used by capture tooling."""
    if len(data) < 4:
        raise ValueError("message shorter than its type header")
    (raw_type,) = struct.unpack_from("<I", data)
    return NetMessage.from_int(raw_type), data[4:]
