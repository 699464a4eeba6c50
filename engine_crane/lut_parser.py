"""
Two-column lookup tables as used throughout AC's data files.

A LUT lives either in its own file (``key|value`` lines, CRLF terminated,
``;`` comments) or inline in an INI property as ``(k0=v0|k1=v1)``.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .errors import InvalidCar, MissingMandatoryProperty
from .ini_parser import Ini, format_value

logger = logging.getLogger(__name__)

Parser = Callable[[str], object]
LutData = List[Tuple[object, object]]


def _strip_ws(s: str) -> str:
    return ''.join(s.split())


def parse_lut(text: str, delimiter: str = '|', terminator: Optional[str] = None,
              key_type: Parser = float, value_type: Parser = float) -> LutData:
    """
    Parse LUT text into ``(key, value)`` pairs, keeping file order.

    With no ``terminator`` any line ending splits records. Blank records
    and ``;`` comments are skipped; records with fewer than two fields or
    values that don't parse raise ValueError.
    """
    records = text.splitlines() if terminator is None else text.split(terminator)
    pairs: LutData = []
    for lineno, record in enumerate(records, start=1):
        record = record.split(';', 1)[0]
        if not record.strip():
            continue
        parts = record.split(delimiter)
        if len(parts) < 2:
            raise ValueError(f"Cannot access index 1 of lut at line {lineno}")
        try:
            key = key_type(_strip_ws(parts[0]))
            value = value_type(_strip_ws(parts[1]))
        except ValueError as exc:
            raise ValueError(f"Invalid lut types at line {lineno}. {exc}") from exc
        pairs.append((key, value))
    return pairs


def format_lut(data: Sequence[Tuple[object, object]]) -> bytes:
    return ''.join(f"{format_value(k)}|{format_value(v)}\r\n" for k, v in data).encode('utf-8')


def parse_inline_lut(property_value: str, key_type: Parser = float, value_type: Parser = float) -> LutData:
    inner = property_value.strip()
    if not (inner.startswith('(') and inner.endswith(')')):
        raise ValueError(f"Not an inline lut: {property_value}")
    return parse_lut(inner[1:-1], delimiter='=', terminator='|', key_type=key_type, value_type=value_type)


def format_inline_lut(data: Sequence[Tuple[object, object]]) -> str:
    return '(' + '|'.join(f"{format_value(k)}={format_value(v)}" for k, v in data) + ')'


@dataclass
class LutFile:
    filename: str
    data: LutData = field(default_factory=list)

    def to_bytes(self) -> bytes:
        return format_lut(self.data)


@dataclass
class InlineLut:
    data: LutData = field(default_factory=list)

    def __str__(self) -> str:
        return format_inline_lut(self.data)


@dataclass
class PathOnlyLut:
    path: str


LutType = Union[LutFile, InlineLut, PathOnlyLut]


def load_lut_from_property_value(property_value: str, data_interface,
                                 key_type: Parser = float, value_type: Parser = float) -> LutType:
    """Values starting with '(' are inline; anything else names a file in the data interface."""
    if property_value.startswith('('):
        return InlineLut(parse_inline_lut(property_value, key_type, value_type))
    data = data_interface.get(property_value)
    if data is None:
        raise ValueError(f"Failed to load {property_value} from data source. No such file")
    try:
        pairs = parse_lut(data.decode('utf-8', errors='ignore'), key_type=key_type, value_type=value_type)
    except ValueError as exc:
        raise ValueError(f"Failed to parse lut from {property_value} in data source. {exc}") from exc
    return LutFile(property_value, pairs)


class LutProperty:
    """An INI property whose value is (or points at) a LUT."""

    def __init__(self, section: str, key: str, lut: LutType) -> None:
        self.section = section
        self.key = key
        self.lut = lut

    @classmethod
    def path_only(cls, section: str, key: str, path: str) -> 'LutProperty':
        return cls(section, key, PathOnlyLut(path))

    @classmethod
    def mandatory_from_ini(cls, section: str, key: str, ini: Ini, data_interface,
                           key_type: Parser = float, value_type: Parser = float,
                           filename: Optional[str] = None) -> 'LutProperty':
        raw = ini.get_value(section, key)
        if raw is None:
            raise MissingMandatoryProperty(section, key, filename)
        try:
            lut = load_lut_from_property_value(raw, data_interface, key_type, value_type)
        except ValueError as exc:
            raise InvalidCar(str(exc), section=section, key=key, filename=filename) from exc
        return cls(section, key, lut)

    @classmethod
    def optional_from_ini(cls, section: str, key: str, ini: Ini, data_interface,
                          key_type: Parser = float, value_type: Parser = float) -> Optional['LutProperty']:
        raw = ini.get_value(section, key)
        if raw is None:
            return None
        try:
            lut = load_lut_from_property_value(raw, data_interface, key_type, value_type)
        except ValueError as exc:
            logger.warning("Ignoring %s.%s. %s", section, key, exc)
            return None
        return cls(section, key, lut)

    def update(self, data: LutData) -> LutData:
        """Replace the table contents; returns the old contents."""
        if isinstance(self.lut, PathOnlyLut):
            raise ValueError(f"Can't update data of path-only lut {self.lut.path}")
        old = self.lut.data
        self.lut.data = list(data)
        return old

    def to_vec(self) -> LutData:
        if isinstance(self.lut, PathOnlyLut):
            return []
        return list(self.lut.data)

    def num_entries(self) -> int:
        return len(self.to_vec())

    def property_value(self) -> str:
        if isinstance(self.lut, LutFile):
            return self.lut.filename
        if isinstance(self.lut, InlineLut):
            return str(self.lut)
        return self.lut.path

    def update_car_data(self, ini: Ini, data_interface) -> None:
        """Write the INI value and, for file-backed tables, the LUT file itself."""
        ini.set_value(self.section, self.key, self.property_value())
        if isinstance(self.lut, LutFile):
            data_interface.update(self.lut.filename, self.lut.to_bytes())

    def delete_from_car_data(self, ini: Ini, data_interface) -> None:
        ini.remove_value(self.section, self.key)
        if isinstance(self.lut, LutFile):
            data_interface.remove(self.lut.filename)

    def __repr__(self) -> str:
        return f"LutProperty({self.section}.{self.key}={self.lut!r})"


class LutInterpolator:
    """Linear interpolation over a key-sorted table; out-of-range keys give None."""

    def __init__(self, data: Sequence[Tuple[float, float]]) -> None:
        self.data = [(float(k), float(v)) for k, v in data]
        self._keys = [k for k, _ in self.data]

    @classmethod
    def from_lut(cls, lut: Union[LutType, LutProperty]) -> 'LutInterpolator':
        if isinstance(lut, LutProperty):
            return cls(lut.to_vec())
        if isinstance(lut, PathOnlyLut):
            return cls([])
        return cls(lut.data)

    def get_value(self, key: float) -> Optional[float]:
        if not self.data:
            return None
        if key < self._keys[0] or key > self._keys[-1]:
            return None
        idx = bisect.bisect_left(self._keys, key)
        k2, v2 = self.data[idx]
        if k2 == key:
            return v2
        k1, v1 = self.data[idx - 1]
        fraction = (key - k1) / (k2 - k1)
        return v1 + fraction * (v2 - v1)
