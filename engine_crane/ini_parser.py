from __future__ import annotations

import configparser
import io
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar, Union

from .errors import MissingMandatoryProperty
from .numeric import format_number

T = TypeVar('T')

# AC files may legitimately contain a [DEFAULT] section, so configparser's
# special default section is moved out of the way.
_NO_DEFAULT_SECTION = '\x00engine-crane-defaults'


def _new_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None,
                                       delimiters=('=',),
                                       comment_prefixes=(';', '#', '//'),
                                       strict=False,
                                       default_section=_NO_DEFAULT_SECTION)
    parser.optionxform = str  # preserve case
    return parser


def _clean_content(content: str) -> str:
    """
    Reduce AC-flavoured INI text to something configparser accepts.

    Leading garbage before the first section is dropped, ';' comments are
    stripped wherever they start, and lines that are neither a section
    header nor a key=value pair are ignored. Indented lines are flattened
    so configparser never treats them as continuations.
    """
    filtered_lines: List[str] = []
    in_section = False
    for line in content.splitlines():
        ls = line.split(';', 1)[0].strip()
        if not ls or ls.startswith('#') or ls.startswith('//'):
            continue
        if ls.startswith('['):
            end = ls.find(']')
            if end > 1:
                filtered_lines.append(ls[:end + 1])
                in_section = True
            continue
        if in_section and '=' in ls and not ls.startswith('='):
            filtered_lines.append(ls)
    return '\n'.join(filtered_lines)


class Ini:
    """Ordered, case-sensitive INI document backed by configparser."""

    def __init__(self, parser: Optional[configparser.ConfigParser] = None) -> None:
        self._parser = parser if parser is not None else _new_parser()

    @classmethod
    def load_from_string(cls, content: str) -> 'Ini':
        parser = _new_parser()
        parser.read_string(_clean_content(content))
        return cls(parser)

    @classmethod
    def load_from_bytes(cls, data: bytes) -> 'Ini':
        return cls.load_from_string(data.decode('utf-8-sig', errors='ignore'))

    @classmethod
    def load_from_file(cls, path: Path) -> 'Ini':
        """Missing files raise FileNotFoundError."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(str(path))
        return cls.load_from_bytes(path.read_bytes())

    def to_string(self) -> str:
        buf = io.StringIO()
        self._parser.write(buf, space_around_delimiters=False)
        return buf.getvalue()

    def to_bytes(self) -> bytes:
        return self.to_string().encode('utf-8')

    def write_to_file(self, path: Path) -> None:
        Path(path).write_bytes(self.to_bytes())

    def section_names(self) -> List[str]:
        return self._parser.sections()

    def sections_starting_with(self, prefix: str) -> List[str]:
        return [name for name in self._parser.sections() if name.startswith(prefix)]

    def property_names(self, section: str) -> List[str]:
        if not self._parser.has_section(section):
            return []
        return list(self._parser[section].keys())

    def contains_section(self, section: str) -> bool:
        return self._parser.has_section(section)

    def section_contains_property(self, section: str, key: str) -> bool:
        return self._parser.has_section(section) and self._parser.has_option(section, key)

    def get_value(self, section: str, key: str) -> Optional[str]:
        if not self.section_contains_property(section, key):
            return None
        return self._parser.get(section, key)

    def set_value(self, section: str, key: str, value: str) -> Optional[str]:
        """Set a value, creating the section when needed. Returns the previous value."""
        old = self.get_value(section, key)
        if not self._parser.has_section(section):
            self._parser.add_section(section)
        self._parser.set(section, key, value)
        return old

    def remove_value(self, section: str, key: str) -> Optional[str]:
        old = self.get_value(section, key)
        if old is not None:
            self._parser.remove_option(section, key)
        return old

    def remove_section(self, section: str) -> bool:
        return self._parser.remove_section(section)

    def __repr__(self) -> str:
        return f"Ini(sections={self.section_names()!r})"


def parse_int(value: str) -> int:
    """int() that also accepts integral decimals such as '7000.0'."""
    try:
        return int(value)
    except ValueError:
        as_float = float(value)
        if not as_float.is_integer():
            raise
        return int(as_float)


def parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ('1', 'true', 'yes', 'on'):
        return True
    if v in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(f"Not a boolean: {value}")


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def format_float(value: float, decimal_places: int) -> str:
    return f"{value:.{decimal_places}f}"


def get_value(ini: Ini, section: str, key: str, parse: Callable[[str], T] = str) -> Optional[T]:
    """Typed read; absent or unparsable values give None."""
    raw = ini.get_value(section, key)
    if raw is None:
        return None
    try:
        return parse(raw)
    except ValueError:
        return None


def get_mandatory_property(ini: Ini, section: str, key: str,
                           parse: Callable[[str], T] = str,
                           filename: Optional[str] = None) -> T:
    value = get_value(ini, section, key, parse)
    if value is None:
        raise MissingMandatoryProperty(section, key, filename)
    return value


def set_value(ini: Ini, section: str, key: str, value: Any) -> Optional[str]:
    return ini.set_value(section, key, format_value(value))


def set_float(ini: Ini, section: str, key: str, value: float, decimal_places: int) -> Optional[str]:
    return ini.set_value(section, key, format_float(value, decimal_places))


def set_optional_value(ini: Ini, section: str, key: str,
                       value: Union[int, float, str, None],
                       decimal_places: Optional[int] = None) -> None:
    """Write ``value`` or, when it's None, remove the key."""
    if value is None:
        ini.remove_value(section, key)
    elif decimal_places is not None:
        set_float(ini, section, key, float(value), decimal_places)
    else:
        set_value(ini, section, key, value)
