"""
The two bincode framings crate engine files are made of.

``Legacy`` is bincode 1: fixed width little-endian integers, u64 length
prefixes and u32 enum variant indexes. ``Standard`` is bincode 2: every
integer (lengths and variant indexes included) is varint encoded and
signed values are zigzagged first. Both share Option framing (a u8 tag)
and fixed 8 byte floats.
"""

from __future__ import annotations

import io
import struct
from typing import BinaryIO, Callable, Dict, List, Optional, TypeVar

from ..errors import DecodeError, EncodeError

T = TypeVar('T')
K = TypeVar('K')
V = TypeVar('V')

HASH_LEN = 32

_VARINT_U16 = 251
_VARINT_U32 = 252
_VARINT_U64 = 253
_VARINT_U128 = 254

_UINT_FORMATS = {1: '<B', 2: '<H', 4: '<I', 8: '<Q'}
_INT_FORMATS = {1: '<b', 2: '<h', 4: '<i', 8: '<q'}


class BincodeReader:
    """Reads values in the legacy framing from a binary stream."""

    def __init__(self, stream: BinaryIO, path: Optional[str] = None) -> None:
        self.stream = stream
        self.path = path

    @classmethod
    def from_bytes(cls, data: bytes) -> 'BincodeReader':
        return cls(io.BytesIO(data))

    def _error(self, reason: str) -> DecodeError:
        return DecodeError(self.path, reason)

    def raw(self, count: int) -> bytes:
        data = self.stream.read(count)
        if len(data) != count:
            raise self._error(f"Unexpected end of data; wanted {count} bytes, got {len(data)}")
        return data

    def _fixed(self, fmt: str, size: int):
        return struct.unpack(fmt, self.raw(size))[0]

    def uint(self, size: int) -> int:
        return self._fixed(_UINT_FORMATS[size], size)

    def sint(self, size: int) -> int:
        return self._fixed(_INT_FORMATS[size], size)

    def u8(self) -> int:
        return self._fixed('<B', 1)

    def u16(self) -> int:
        return self.uint(2)

    def u32(self) -> int:
        return self.uint(4)

    def u64(self) -> int:
        return self.uint(8)

    def i32(self) -> int:
        return self.sint(4)

    def f64(self) -> float:
        return self._fixed('<d', 8)

    def boolean(self) -> bool:
        value = self.u8()
        if value > 1:
            raise self._error(f"Invalid bool value {value}")
        return value == 1

    def length(self) -> int:
        return self.u64()

    def variant(self) -> int:
        return self.u32()

    def blob(self) -> bytes:
        return self.raw(self.length())

    def string(self) -> str:
        data = self.blob()
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise self._error(f"Invalid utf-8 string. {exc}") from exc

    def hash(self) -> bytes:
        return self.raw(HASH_LEN)

    def option(self, read: Callable[[], T]) -> Optional[T]:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return read()
        raise self._error(f"Invalid Option tag {tag}")

    def seq(self, read: Callable[[], T]) -> List[T]:
        return [read() for _ in range(self.length())]

    def map(self, read_key: Callable[[], K], read_value: Callable[[], V]) -> Dict[K, V]:
        result: Dict[K, V] = {}
        for _ in range(self.length()):
            key = read_key()
            result[key] = read_value()
        return result


class StandardBincodeReader(BincodeReader):
    """Reads values in the varint framing."""

    def _varint(self) -> int:
        first = self.u8()
        if first < _VARINT_U16:
            return first
        if first == _VARINT_U16:
            return self._fixed('<H', 2)
        if first == _VARINT_U32:
            return self._fixed('<I', 4)
        if first == _VARINT_U64:
            return self._fixed('<Q', 8)
        if first == _VARINT_U128:
            low, high = struct.unpack('<QQ', self.raw(16))
            return low | (high << 64)
        raise self._error(f"Invalid varint discriminant {first}")

    def uint(self, size: int) -> int:
        if size == 1:
            return self.u8()
        value = self._varint()
        if value >= 1 << (size * 8):
            raise self._error(f"Varint {value} doesn't fit in {size * 8} bits")
        return value

    def sint(self, size: int) -> int:
        value = self.uint(size)
        return (value >> 1) ^ -(value & 1)

    def length(self) -> int:
        return self.uint(8)

    def variant(self) -> int:
        return self.uint(4)


class BincodeWriter:
    """Writes values in the legacy framing."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    def getvalue(self) -> bytes:
        return bytes(self.buffer)

    def _fixed(self, fmt: str, value) -> None:
        try:
            self.buffer += struct.pack(fmt, value)
        except struct.error as exc:
            raise EncodeError(None, f"{value!r} can't be packed as {fmt}. {exc}") from exc

    def raw(self, data: bytes) -> None:
        self.buffer += data

    def uint(self, size: int, value: int) -> None:
        self._fixed(_UINT_FORMATS[size], value)

    def sint(self, size: int, value: int) -> None:
        self._fixed(_INT_FORMATS[size], value)

    def u8(self, value: int) -> None:
        self._fixed('<B', value)

    def u16(self, value: int) -> None:
        self.uint(2, value)

    def u32(self, value: int) -> None:
        self.uint(4, value)

    def u64(self, value: int) -> None:
        self.uint(8, value)

    def i32(self, value: int) -> None:
        self.sint(4, value)

    def f64(self, value: float) -> None:
        self._fixed('<d', value)

    def boolean(self, value: bool) -> None:
        self.u8(1 if value else 0)

    def length(self, value: int) -> None:
        self.u64(value)

    def variant(self, index: int) -> None:
        self.u32(index)

    def blob(self, data: bytes) -> None:
        self.length(len(data))
        self.raw(data)

    def string(self, value: str) -> None:
        self.blob(value.encode('utf-8'))

    def hash(self, digest: bytes) -> None:
        if len(digest) != HASH_LEN:
            raise EncodeError(None, f"Hash must be {HASH_LEN} bytes, got {len(digest)}")
        self.raw(digest)

    def option(self, value: Optional[T], write: Callable[[T], None]) -> None:
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            write(value)

    def seq(self, values: List[T], write: Callable[[T], None]) -> None:
        self.length(len(values))
        for value in values:
            write(value)

    def map(self, values: Dict[K, V], write_key: Callable[[K], None], write_value: Callable[[V], None]) -> None:
        self.length(len(values))
        for key, value in values.items():
            write_key(key)
            write_value(value)


class StandardBincodeWriter(BincodeWriter):
    """Writes values in the varint framing."""

    def _varint(self, value: int) -> None:
        if value < 0:
            raise EncodeError(None, f"Varint can't hold negative value {value}")
        if value < _VARINT_U16:
            self.buffer.append(value)
        elif value <= 0xFFFF:
            self.buffer.append(_VARINT_U16)
            self._fixed('<H', value)
        elif value <= 0xFFFFFFFF:
            self.buffer.append(_VARINT_U32)
            self._fixed('<I', value)
        elif value <= 0xFFFFFFFFFFFFFFFF:
            self.buffer.append(_VARINT_U64)
            self._fixed('<Q', value)
        else:
            raise EncodeError(None, f"{value} is too large for a 64 bit varint")

    def uint(self, size: int, value: int) -> None:
        if size == 1:
            self.u8(value)
            return
        if not 0 <= value < 1 << (size * 8):
            raise EncodeError(None, f"{value} doesn't fit in an unsigned {size * 8} bit integer")
        self._varint(value)

    def sint(self, size: int, value: int) -> None:
        bits = size * 8
        if not -(1 << (bits - 1)) <= value < 1 << (bits - 1):
            raise EncodeError(None, f"{value} doesn't fit in a signed {bits} bit integer")
        self._varint((value << 1) ^ (value >> (bits - 1)))

    def length(self, value: int) -> None:
        self.uint(8, value)

    def variant(self, index: int) -> None:
        self.uint(4, index)
