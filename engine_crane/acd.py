"""
Reader/writer for Assetto Corsa ``data.acd`` archives.

The archive is a flat list of ``(filename, content)`` entries. Each content
byte is stored in its own little-endian 32-bit slot after being offset by
the next character of a key derived from the name of the car folder that
holds the archive. Derivation follows Luigi Auriemma's quickBMS script.
"""

from __future__ import annotations

import enum
import logging
import struct
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .errors import AcdDecodeError, AcdEncodeError, AcdKeyError
from .numeric import trunc_div, trunc_mod

logger = logging.getLogger(__name__)

DLC_BYTE_MARKER = bytes([0xA9, 0xFB, 0xFF, 0xFF])
ACD_FILENAME = 'data.acd'
MIN_FOLDER_NAME_LENGTH = 4


class DlcPack(enum.Enum):
    DREAM_PACK_1 = bytes([0x91, 0x46, 0x0A, 0x00])
    DREAM_PACK_2 = bytes([0xFD, 0xEA, 0x0D, 0x00])
    DREAM_PACK_3 = bytes([0xB1, 0xEB, 0x0B, 0x00])
    JAPANESE_CAR_PACK = bytes([0x87, 0xB7, 0x03, 0x00])
    RED_PACK = bytes([0x35, 0x57, 0x0B, 0x00])
    TRIPL3_PACK = bytes([0x91, 0xC7, 0x04, 0x00])
    PORSCHE_PACK_1 = bytes([0xA1, 0x09, 0x0E, 0x00])
    PORSCHE_PACK_2 = bytes([0x3F, 0xC0, 0x0C, 0x00])
    PORSCHE_PACK_3 = bytes([0xF2, 0x05, 0x09, 0x00])
    READY_TO_RACE = bytes([0xBF, 0xE4, 0x07, 0x00])
    FERRARI_PACK = bytes([0xDA, 0xEB, 0x0D, 0x00])
    UNKNOWN = b''

    @classmethod
    def from_bytes(cls, data: bytes) -> 'DlcPack':
        for pack in cls:
            if pack.value == data:
                return pack
        return cls.UNKNOWN


def generate_acd_key(folder_name: str) -> str:
    """
    Derive the extraction key for an archive stored in ``folder_name``.

    Eight components are mixed from the character codes of the name and
    each is reduced to its low byte; the key is their decimal forms joined
    with '-'.
    """
    n = len(folder_name)
    if n < MIN_FOLDER_NAME_LENGTH:
        raise AcdKeyError(folder_name, f"Folder name must be at least {MIN_FOLDER_NAME_LENGTH} characters")
    c = [ord(ch) for ch in folder_name]

    def at(idx: int) -> int:
        if idx < 0 or idx >= n:
            raise AcdKeyError(folder_name, f"Bad index ({idx}) into folder name")
        return c[idx]

    components: List[int] = []

    key_1 = sum(c)
    components.append(key_1)

    key_2 = 0
    for idx in range(0, n - 1, 2):
        key_2 *= at(idx)
        key_2 -= at(idx + 1)
    components.append(key_2)

    key_3 = 0
    for idx in range(1, n - 3, 3):
        key_3 *= at(idx)
        key_3 = trunc_div(key_3, at(idx + 1) + 0x1b)
        key_3 += -0x1b - at(idx - 1)
    components.append(key_3)

    key_4 = 0x1683
    for code in c[1:]:
        key_4 -= code
    components.append(key_4)

    key_5 = 0x42
    for idx in range(1, n - 4, 4):
        tmp = (at(idx) + 0xf) * key_5
        key_5 = (at(idx - 1) + 0xf) * tmp + 0x16
    components.append(key_5)

    key_6 = 0x65
    for code in c[0:n - 2:2]:
        key_6 -= code
    components.append(key_6)

    key_7 = 0xab
    for code in c[0:n - 2:2]:
        key_7 = trunc_mod(key_7, code)
    components.append(key_7)

    key_8 = 0xab
    for idx in range(0, n - 1):
        key_8 = trunc_div(key_8, at(idx))
        key_8 += at(idx + 1)
    components.append(key_8)

    return '-'.join(str(v & 0xff) for v in components)


def _parent_folder_name(path: Path) -> str:
    name = path.parent.name or path.resolve().parent.name
    if not name:
        raise AcdDecodeError(path, "Can't deduce parent folder")
    return name


class _PackedReader:
    def __init__(self, path: Path, buffer: bytes) -> None:
        self.path = path
        self.buffer = buffer
        self.pos = 0

    def remaining(self) -> int:
        return len(self.buffer) - self.pos

    def peek(self, count: int) -> bytes:
        return self.buffer[self.pos:self.pos + count]

    def read(self, count: int, what: str) -> bytes:
        if self.pos + count > len(self.buffer):
            raise AcdDecodeError(self.path, f"Failed to parse {what}. Reached end of data")
        data = self.buffer[self.pos:self.pos + count]
        self.pos += count
        return data

    def read_u32(self, what: str) -> int:
        return struct.unpack('<I', self.read(4, what))[0]


def decode_acd(data: bytes, key: str, path: Union[str, Path] = '') -> Tuple[Optional[bytes], Dict[str, bytes]]:
    """Decode archive bytes into ``(dlc_header, {filename: content})``."""
    reader = _PackedReader(Path(path), data)
    dlc_id: Optional[bytes] = None
    if reader.peek(len(DLC_BYTE_MARKER)) == DLC_BYTE_MARKER:
        reader.read(len(DLC_BYTE_MARKER), "DLC byte marker")
        dlc_id = reader.read(4, "DLC pack id")
    key_codes = [ord(ch) for ch in key]
    key_len = len(key_codes)
    files: Dict[str, bytes] = {}
    while reader.remaining() > 0:
        name_len = reader.read_u32("filename length")
        raw_name = reader.read(name_len, "filename")
        try:
            filename = raw_name.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise AcdDecodeError(path, f"Failed to parse filename from UTF-8. {exc}") from exc
        content_len = reader.read_u32(f"{filename} content length")
        packed = reader.read(content_len * 4, f"{filename} content")
        content = bytearray(content_len)
        for i in range(content_len):
            content[i] = (packed[i * 4] - key_codes[i % key_len]) & 0xff
        logger.debug("%s - %d bytes", filename, content_len)
        files[filename] = bytes(content)
    return dlc_id, files


def encode_acd(files: Dict[str, bytes], key: str, dlc_id: Optional[bytes] = None) -> bytes:
    key_codes = [ord(ch) for ch in key]
    key_len = len(key_codes)
    out = bytearray()
    if dlc_id is not None:
        out += DLC_BYTE_MARKER
        out += dlc_id
    for filename, content in files.items():
        name_bytes = filename.encode('utf-8')
        out += struct.pack('<I', len(name_bytes))
        out += name_bytes
        out += struct.pack('<I', len(content))
        packed = bytearray(len(content) * 4)
        for i, byte in enumerate(content):
            packed[i * 4] = (byte + key_codes[i % key_len]) & 0xff
        out += packed
    return bytes(out)


class AcdArchive:
    """An in-memory ``data.acd`` with its entries kept in file order."""

    def __init__(self, acd_path: Path, files: Dict[str, bytes], dlc_id: Optional[bytes] = None) -> None:
        self.acd_path = Path(acd_path)
        self.files = files
        self.dlc_id = dlc_id

    @property
    def dlc_pack(self) -> Optional[DlcPack]:
        if self.dlc_id is None:
            return None
        return DlcPack.from_bytes(self.dlc_id)

    @classmethod
    def load_from_acd_file(cls, acd_path: Path) -> 'AcdArchive':
        acd_path = Path(acd_path)
        return cls.load_with_key(acd_path, _parent_folder_name(acd_path))

    @classmethod
    def load_with_key(cls, acd_path: Path, key_seed: str) -> 'AcdArchive':
        acd_path = Path(acd_path)
        key = generate_acd_key(key_seed)
        try:
            data = acd_path.read_bytes()
        except OSError as exc:
            raise AcdDecodeError(acd_path, str(exc)) from exc
        dlc_id, files = decode_acd(data, key, acd_path)
        return cls(acd_path, files, dlc_id)

    @classmethod
    def create_from_data_dir(cls, data_dir: Path) -> 'AcdArchive':
        data_dir = Path(data_dir)
        files: Dict[str, bytes] = {}
        for entry in sorted(data_dir.iterdir()):
            if entry.is_file():
                files[entry.name] = entry.read_bytes()
        return cls(data_dir.parent / ACD_FILENAME, files)

    def get_file_data(self, filename: str) -> Optional[bytes]:
        return self.files.get(filename)

    def contains_file(self, filename: str) -> bool:
        return filename in self.files

    def update_file_data(self, filename: str, data: bytes) -> Optional[bytes]:
        previous = self.files.get(filename)
        self.files[filename] = bytes(data)
        return previous

    def delete_file(self, filename: str) -> Optional[bytes]:
        return self.files.pop(filename, None)

    def filenames(self) -> Iterator[str]:
        return iter(self.files)

    def unpack(self) -> Path:
        out = self.acd_path.parent / 'data'
        self.unpack_to(out)
        return out

    def unpack_to(self, out_dir: Path) -> None:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        for filename, content in self.files.items():
            (out_dir / filename).write_bytes(content)

    def write(self) -> None:
        self.write_to(self.acd_path)

    def write_to(self, out_path: Path) -> None:
        """Write the archive keyed from the destination's parent folder name."""
        out_path = Path(out_path)
        try:
            key = generate_acd_key(_parent_folder_name(out_path))
        except AcdKeyError as exc:
            raise AcdEncodeError(out_path, str(exc)) from exc
        data = encode_acd(self.files, key, self.dlc_id)
        tmp_path = out_path.with_name(out_path.name + '.tmp')
        try:
            tmp_path.write_bytes(data)
            tmp_path.replace(out_path)
        except OSError as exc:
            raise AcdEncodeError(out_path, str(exc)) from exc
