"""
Mori — Variant List Decoder

Server events arrive as a "function call": an ordered list of typed values
where element 0 is the function name. Wire layout (little-endian):

    [count:1] then count x [index:1][tag:1][payload:N]

Tags live in VARIANT_TAGS so the transport owner can swap the scheme.
The default registry is the Proton variant layout:

    1  float     f32
    2  string    u32 length + UTF-8 bytes
    3  vec2      2 x f32
    4  vec3      3 x f32
    5  unsigned  u32
    9  signed    i32

An unregistered tag decodes to an inert UNKNOWN value and consumes no
payload bytes, so one odd entry does not sink the whole list.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Iterator

from mori.errors import DecodeError, TypeMismatch


class VariantType(IntEnum):
    UNKNOWN = 0
    FLOAT = 1
    STRING = 2
    VEC2 = 3
    VEC3 = 4
    UNSIGNED = 5
    SIGNED = 9


@dataclass(frozen=True)
class Value:
    """One decoded entry of a variant list."""
    type: VariantType
    data: Any = None
    index: int = 0  # index byte as sent by the server

    def _expect(self, expected: VariantType) -> Any:
        if self.type is not expected:
            raise TypeMismatch(expected.name.lower(), self.type.name.lower())
        return self.data

    def as_text(self) -> str:
        return self._expect(VariantType.STRING)

    def as_float(self) -> float:
        return self._expect(VariantType.FLOAT)

    def as_uint32(self) -> int:
        return self._expect(VariantType.UNSIGNED)

    def as_int32(self) -> int:
        return self._expect(VariantType.SIGNED)

    def as_vec2(self) -> tuple[float, float]:
        return self._expect(VariantType.VEC2)

    def as_vec3(self) -> tuple[float, float, float]:
        return self._expect(VariantType.VEC3)

    def to_native(self) -> Any:
        """Plain Python form: str, float, int, {"x", "y"[, "z"]} or None."""
        match self.type:
            case VariantType.VEC2:
                return {"x": self.data[0], "y": self.data[1]}
            case VariantType.VEC3:
                return {"x": self.data[0], "y": self.data[1], "z": self.data[2]}
            case VariantType.UNKNOWN:
                return None
            case _:
                return self.data


@dataclass
class VariantList:
    """Ordered sequence of values; element 0 is the function name."""
    values: list[Value] = field(default_factory=list)

    def get(self, i: int) -> Value | None:
        if 0 <= i < len(self.values):
            return self.values[i]
        return None

    def require(self, i: int) -> Value:
        """Like get(), but a missing element is a DecodeError."""
        v = self.get(i)
        if v is None:
            raise DecodeError(f"variant list has {len(self.values)} entries, wanted index {i}")
        return v

    @property
    def function_name(self) -> str:
        return self.require(0).as_text()

    def to_generic(self) -> dict[int, Any]:
        """1-based mapping of native values (matches Lua table indexing)."""
        return {i + 1: v.to_native() for i, v in enumerate(self.values)}

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Value]:
        return iter(self.values)


# ---- Tag registry ----

@dataclass
class TagDef:
    """How to read (and, for fixtures, write) one variant tag."""
    tag: int
    type: VariantType
    read: Callable[[memoryview, int], tuple[Any, int]]
    write: Callable[[Any], bytes] | None = None


def _read_struct(fmt: str) -> Callable[[memoryview, int], tuple[Any, int]]:
    st = struct.Struct(fmt)

    def read(buf: memoryview, offset: int) -> tuple[Any, int]:
        if offset + st.size > len(buf):
            raise DecodeError(f"truncated variant payload at offset {offset}")
        vals = st.unpack_from(buf, offset)
        return (vals[0] if len(vals) == 1 else vals), offset + st.size

    return read


def _read_string(buf: memoryview, offset: int) -> tuple[str, int]:
    if offset + 4 > len(buf):
        raise DecodeError(f"truncated string length at offset {offset}")
    (length,) = struct.unpack_from("<I", buf, offset)
    offset += 4
    if offset + length > len(buf):
        raise DecodeError(f"string of {length} bytes overruns buffer at offset {offset}")
    raw = bytes(buf[offset:offset + length])
    return raw.decode("utf-8", errors="replace"), offset + length


def _write_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


VARIANT_TAGS: dict[int, TagDef] = {
    1: TagDef(1, VariantType.FLOAT, _read_struct("<f"), lambda v: struct.pack("<f", v)),
    2: TagDef(2, VariantType.STRING, _read_string, _write_string),
    3: TagDef(3, VariantType.VEC2, _read_struct("<2f"), lambda v: struct.pack("<2f", *v)),
    4: TagDef(4, VariantType.VEC3, _read_struct("<3f"), lambda v: struct.pack("<3f", *v)),
    5: TagDef(5, VariantType.UNSIGNED, _read_struct("<I"), lambda v: struct.pack("<I", v)),
    9: TagDef(9, VariantType.SIGNED, _read_struct("<i"), lambda v: struct.pack("<i", v)),
}


def register_tag(tagdef: TagDef) -> None:
    """Register (or replace) a tag decoder."""
    VARIANT_TAGS[tagdef.tag] = tagdef


def decode(data: bytes) -> VariantList:
    """Parse one variant list. Raises DecodeError on short/garbled input."""
    buf = memoryview(data)
    if len(buf) < 1:
        raise DecodeError("empty variant buffer")

    count = buf[0]
    offset = 1
    values: list[Value] = []
    for _ in range(count):
        if offset + 2 > len(buf):
            raise DecodeError(f"truncated variant header at offset {offset}")
        index, tag = buf[offset], buf[offset + 1]
        offset += 2
        tagdef = VARIANT_TAGS.get(tag)
        if tagdef is None:
            values.append(Value(VariantType.UNKNOWN, tag, index))
            continue
        payload, offset = tagdef.read(buf, offset)
        if isinstance(payload, tuple):
            payload = tuple(payload)
        values.append(Value(tagdef.type, payload, index))
    return VariantList(values)


def encode(*items: Any) -> bytes:
    """Build a variant buffer from Python values (test fixtures, capture tools).

    str -> string, float -> float, int -> signed, 2/3-tuples -> vec2/vec3.
    Pass a Value to force a specific tag (e.g. Value(VariantType.UNSIGNED, 7)).
    """
    out = bytearray([len(items)])
    for i, item in enumerate(items):
        if isinstance(item, Value):
            vtype, data = item.type, item.data
        elif isinstance(item, str):
            vtype, data = VariantType.STRING, item
        elif isinstance(item, bool):
            vtype, data = VariantType.UNSIGNED, int(item)
        elif isinstance(item, int):
            vtype, data = VariantType.SIGNED, item
        elif isinstance(item, float):
            vtype, data = VariantType.FLOAT, item
        elif isinstance(item, tuple) and len(item) == 2:
            vtype, data = VariantType.VEC2, item
        elif isinstance(item, tuple) and len(item) == 3:
            vtype, data = VariantType.VEC3, item
        else:
            raise TypeError(f"cannot encode {item!r} as a variant")

        tagdef = next((t for t in VARIANT_TAGS.values() if t.type is vtype), None)
        if tagdef is None or tagdef.write is None:
            raise TypeError(f"no writable tag registered for {vtype.name}")
        out += bytes([i, tagdef.tag])
        out += tagdef.write(data)
    return bytes(out)
