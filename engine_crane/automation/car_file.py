"""
Reader and writer for Automation's exported ``.car`` files.

A ``.car`` file is a tag-typed tree. It opens with a blob mark and a pad
byte, then the header of the implicit ``Car`` section. Each child is a name
tag (text or number), the name, a value tag and the value. A section value
is followed by its type id and child count, and the next ``count`` children
belong to it.

Decoding keeps enough framing (tags, raw numeric names, skipped bytes) to
write the same bytes back out.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from ..errors import CarFileAccessError, CarFileDecodeError, CarFileEncodeError
from ..numeric import format_number, round_float_to


class TypeId(enum.IntEnum):
    BLOB_MARK = 1
    FALSE = 48
    TRUE = 49
    NUMBER = 78
    TEXT = 83
    SECTION = 84


_KNOWN_TAGS = {t.value for t in TypeId}


@dataclass
class AttributeValue:
    """One leaf value. ``kind`` is ``blob``, ``text``, ``number``, ``false`` or ``true``."""

    kind: str
    value: Union[bytes, str, float, bool, None] = None

    @classmethod
    def blob(cls, data: bytes) -> 'AttributeValue':
        return cls('blob', bytes(data))

    @classmethod
    def text(cls, text: str) -> 'AttributeValue':
        return cls('text', text)

    @classmethod
    def number(cls, num: float) -> 'AttributeValue':
        return cls('number', float(num))

    @classmethod
    def boolean(cls, flag: bool) -> 'AttributeValue':
        return cls('true' if flag else 'false', flag)

    def as_str(self) -> str:
        if self.kind == 'blob':
            return 'BLOB'
        if self.kind == 'text':
            return self.value  # type: ignore[return-value]
        if self.kind == 'number':
            return ''
        return self.kind

    def as_num(self) -> float:
        if self.kind != 'number':
            raise CarFileAccessError("Not a number")
        return self.value  # type: ignore[return-value]

    def checksum_bytes(self) -> bytes:
        if self.kind == 'blob':
            return self.value  # type: ignore[return-value]
        if self.kind == 'text':
            return self.value.encode('utf-8')  # type: ignore[union-attr]
        if self.kind == 'number':
            return format_number(round_float_to(self.value, 10)).encode('utf-8')  # type: ignore[arg-type]
        return self.kind.encode('utf-8')

    def __str__(self) -> str:
        if self.kind == 'number':
            return format_number(self.value)  # type: ignore[arg-type]
        return self.as_str()


@dataclass
class _Framing:
    """Wire details that don't affect the value but are needed to re-encode it."""

    skipped: bytes = b''
    name_tag: int = TypeId.TEXT
    raw_name_number: Optional[float] = None
    name_prefix: List[bytes] = field(default_factory=list)
    value_tag: int = TypeId.TEXT


@dataclass
class Attribute:
    name: str
    value: AttributeValue
    framing: _Framing = field(default_factory=_Framing, repr=False, compare=False)

    def __str__(self) -> str:
        return f"{self.name} = {self.value}"


class Section:
    def __init__(self, name: str, section_type: int = 0, num_children: int = 0) -> None:
        self.name = name
        self.section_type = section_type
        self.num_children = num_children
        self.children: List[Union[Attribute, 'Section']] = []
        self.framing = _Framing()

    def is_complete(self) -> bool:
        return len(self.children) >= self.num_children

    def add(self, child: Union[Attribute, 'Section']) -> None:
        self.children.append(child)

    def get_section(self, name: str) -> Optional['Section']:
        for child in self.children:
            if isinstance(child, Section) and child.name == name:
                return child
        return None

    def section_keys(self) -> List[str]:
        return [c.name for c in self.children if isinstance(c, Section)]

    def get_attribute(self, name: str) -> Optional[Attribute]:
        for child in self.children:
            if isinstance(child, Attribute) and child.name == name:
                return child
        return None

    def attribute_keys(self) -> List[str]:
        return [c.name for c in self.children if isinstance(c, Attribute)]

    def attributes(self) -> Dict[str, Attribute]:
        return {c.name: c for c in self.children if isinstance(c, Attribute)}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Section):
            return NotImplemented
        return (self.name, self.section_type, self.num_children, self.children) == \
            (other.name, other.section_type, other.num_children, other.children)

    def __repr__(self) -> str:
        return f"Section({self.name!r}, type={self.section_type}, children={len(self.children)})"

    def __str__(self) -> str:
        lines = [f"[{self.name}]"]
        for child in self.children:
            text = str(child)
            lines.append(text if isinstance(child, Attribute) else '  ' + text.replace('\n', '\n  '))
        return '\n'.join(lines)


class _Reader:
    def __init__(self, data: bytes, path: Optional[Path]) -> None:
        self.data = data
        self.pos = 0
        self.path = path

    def at_end(self) -> bool:
        return self.pos >= len(self.data)

    def _take(self, count: int, what: str) -> bytes:
        if self.pos + count > len(self.data):
            raise CarFileDecodeError(self.path, f"Unexpected end of data reading {what} at offset {self.pos}")
        chunk = self.data[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def byte(self) -> int:
        return self._take(1, 'type id')[0]

    def peek_is_blob(self) -> bool:
        return not self.at_end() and self.data[self.pos] == TypeId.BLOB_MARK

    def length(self) -> int:
        return struct.unpack('<I', self._take(4, 'length'))[0]

    def number(self) -> float:
        return struct.unpack('<d', self._take(8, 'number'))[0]

    def raw(self, count: int) -> bytes:
        return self._take(count, 'data')

    def text(self, count: int) -> str:
        raw = self._take(count, 'text')
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise CarFileDecodeError(self.path, f"Failed to parse UTF-8 text. {exc}") from exc


class CarFile:
    """
    A decoded ``.car`` file.

    ``children`` holds the root level nodes in stream order: the ``Car``
    section first, followed by anything that comes after it.
    """

    def __init__(self, pad_byte: int = 0, children: Optional[List[Union[Attribute, Section]]] = None,
                 trailing: bytes = b'') -> None:
        self.pad_byte = pad_byte
        self.children = children if children is not None else []
        self.trailing = trailing

    @classmethod
    def from_bytes(cls, data: bytes, path: Optional[Path] = None) -> 'CarFile':
        reader = _Reader(bytes(data), path)
        if reader.at_end() or reader.byte() != TypeId.BLOB_MARK:
            raise CarFileDecodeError(path, "Stream doesn't open with expected blob mark - is it valid .car data?")
        if reader.at_end():
            raise CarFileDecodeError(path, "Unexpected end of data after opening blob mark")
        car = cls(pad_byte=reader.byte())
        root = Section('Car', reader.length(), reader.length())
        car.children.append(root)
        stack: List[Section] = [] if root.is_complete() else [root]

        while not reader.at_end():
            start = reader.pos
            tag = reader.byte()
            if tag not in _KNOWN_TAGS:
                raise CarFileDecodeError(path, f"Unexpected type {tag} found in stream at offset {start}")
            if tag not in (TypeId.TEXT, TypeId.NUMBER):
                # stray tags between nodes are carried into the next node's framing
                skipped = bytes([tag])
                while not reader.at_end() and reader.data[reader.pos] not in (TypeId.TEXT, TypeId.NUMBER):
                    stray = reader.byte()
                    if stray not in _KNOWN_TAGS:
                        raise CarFileDecodeError(path, f"Unexpected type {stray} found in stream")
                    skipped += bytes([stray])
                if reader.at_end():
                    car.trailing = skipped
                    break
                tag = reader.byte()
            else:
                skipped = b''
            framing = _Framing(skipped=skipped, name_tag=tag)
            node = cls._read_node(reader, framing)
            if stack:
                stack[-1].add(node)
            else:
                car.children.append(node)
            if isinstance(node, Section) and not node.is_complete():
                stack.append(node)
            while stack and stack[-1].is_complete():
                stack.pop()

        if stack:
            raise CarFileDecodeError(
                path, f"Section {stack[-1].name} declared {stack[-1].num_children} children "
                      f"but the stream ended after {len(stack[-1].children)}")
        return car

    @staticmethod
    def _read_node(reader: _Reader, framing: _Framing) -> Union[Attribute, Section]:
        if framing.name_tag == TypeId.NUMBER:
            framing.raw_name_number = reader.number()
            name = format_number(framing.raw_name_number)
        else:
            length = reader.length()
            while reader.peek_is_blob():
                framing.name_prefix.append(reader.raw(length))
                length = reader.length()
            name = reader.text(length)

        value_start = reader.pos
        value_tag = reader.byte()
        framing.value_tag = value_tag
        if value_tag == TypeId.FALSE:
            return Attribute(name, AttributeValue.boolean(False), framing)
        if value_tag == TypeId.TRUE:
            return Attribute(name, AttributeValue.boolean(True), framing)
        if value_tag == TypeId.NUMBER:
            return Attribute(name, AttributeValue.number(reader.number()), framing)
        if value_tag == TypeId.SECTION:
            section = Section(name, reader.length(), reader.length())
            section.framing = framing
            return section
        if value_tag in (TypeId.TEXT, TypeId.BLOB_MARK):
            length = reader.length()
            if reader.peek_is_blob():
                return Attribute(name, AttributeValue.blob(reader.raw(length)), framing)
            return Attribute(name, AttributeValue.text(reader.text(length)), framing)
        raise CarFileDecodeError(reader.path, f"Unexpected type {value_tag} found in stream at offset {value_start}")

    @classmethod
    def load(cls, path: Path) -> 'CarFile':
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise CarFileDecodeError(path, str(exc)) from exc
        return cls.from_bytes(data, path)

    def to_bytes(self) -> bytes:
        if not self.children or not isinstance(self.children[0], Section):
            raise CarFileEncodeError(None, "A .car file must start with the Car section")
        root = self.children[0]
        out = bytearray([TypeId.BLOB_MARK, self.pad_byte & 0xff])
        out += struct.pack('<II', root.section_type, len(root.children))
        for child in root.children:
            self._write_node(out, child)
        for child in self.children[1:]:
            self._write_node(out, child)
        out += self.trailing
        return bytes(out)

    @classmethod
    def _write_node(cls, out: bytearray, node: Union[Attribute, Section]) -> None:
        framing = node.framing
        out += framing.skipped
        if framing.name_tag == TypeId.NUMBER:
            raw_name = framing.raw_name_number
            if raw_name is None or format_number(raw_name) != node.name:
                try:
                    raw_name = float(node.name)
                except ValueError as exc:
                    raise CarFileEncodeError(None, f"Numeric name {node.name!r} isn't a number") from exc
            out.append(TypeId.NUMBER)
            out += struct.pack('<d', raw_name)
        else:
            out.append(TypeId.TEXT)
            for prefix in framing.name_prefix:
                out += struct.pack('<I', len(prefix)) + prefix
            encoded = node.name.encode('utf-8')
            out += struct.pack('<I', len(encoded)) + encoded

        if isinstance(node, Section):
            out.append(TypeId.SECTION)
            out += struct.pack('<II', node.section_type, len(node.children))
            for child in node.children:
                cls._write_node(out, child)
            return

        value = node.value
        if value.kind in ('true', 'false'):
            out.append(TypeId.TRUE if value.kind == 'true' else TypeId.FALSE)
        elif value.kind == 'number':
            out.append(TypeId.NUMBER)
            out += struct.pack('<d', value.value)
        elif value.kind == 'blob':
            if value.value[:1] != bytes([TypeId.BLOB_MARK]):  # type: ignore[index]
                raise CarFileEncodeError(None, f"Blob value of {node.name} must start with a blob mark")
            out.append(framing.value_tag if framing.value_tag in (TypeId.TEXT, TypeId.BLOB_MARK) else TypeId.TEXT)
            out += struct.pack('<I', len(value.value)) + value.value  # type: ignore[arg-type]
        elif value.kind == 'text':
            encoded = value.value.encode('utf-8')  # type: ignore[union-attr]
            out.append(framing.value_tag if framing.value_tag in (TypeId.TEXT, TypeId.BLOB_MARK) else TypeId.TEXT)
            out += struct.pack('<I', len(encoded)) + encoded
        else:
            raise CarFileEncodeError(None, f"Unknown value kind {value.kind}")

    def write(self, path: Path) -> None:
        Path(path).write_bytes(self.to_bytes())

    @property
    def car(self) -> Section:
        return self.children[0]  # type: ignore[return-value]

    def get_section(self, name: str) -> Optional[Section]:
        for child in self.children:
            if isinstance(child, Section) and child.name == name:
                return child
        return None

    def section_keys(self) -> List[str]:
        return [c.name for c in self.children if isinstance(c, Section)]

    def walk(self) -> Iterator[Section]:
        pending = [c for c in self.children if isinstance(c, Section)]
        while pending:
            section = pending.pop(0)
            yield section
            pending.extend(c for c in section.children if isinstance(c, Section))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CarFile):
            return NotImplemented
        return self.children == other.children

    def __str__(self) -> str:
        return '\n'.join(str(c) for c in self.children)


def get_variant_section(car_file: CarFile) -> Section:
    car = car_file.get_section('Car')
    if car is None:
        raise CarFileAccessError("Car section missing from .car file")
    variant = car.get_section('Variant')
    if variant is None:
        raise CarFileAccessError("Variant section missing from .car file")
    return variant
