"""
Plumbing shared by the typed INI sections.

An IniFile is one INI document pulled out of a car's data interface.
Typed sections read themselves from an IniFile (``load_from_parent``) and
write themselves back (``update_car_data``); the file is only pushed back
to the data interface on ``write``.
"""

from __future__ import annotations

import logging
from typing import Optional, Type, TypeVar

from ..data_interface import DataInterface
from ..errors import CarError, InvalidCar
from ..ini_parser import Ini

logger = logging.getLogger(__name__)

S = TypeVar('S')


class IniFile:
    def __init__(self, data_interface: DataInterface, filename: str, ini: Optional[Ini] = None) -> None:
        self.data_interface = data_interface
        self.filename = filename
        self.ini = ini if ini is not None else Ini()

    @classmethod
    def load(cls, data_interface: DataInterface, filename: str) -> 'IniFile':
        """Load a file the car can't do without; absence makes the car invalid."""
        data = data_interface.get(filename)
        if data is None:
            raise InvalidCar(f"missing {filename} data")
        return cls(data_interface, filename, Ini.load_from_bytes(data))

    @classmethod
    def load_optional(cls, data_interface: DataInterface, filename: str) -> Optional['IniFile']:
        data = data_interface.get(filename)
        if data is None:
            return None
        return cls(data_interface, filename, Ini.load_from_bytes(data))

    def write(self) -> None:
        """Queue the INI with the data interface and flush it."""
        self.data_interface.update(self.filename, self.ini.to_bytes())
        self.data_interface.flush()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.filename})"


def extract_mandatory_section(section_type: Type[S], parent: IniFile) -> S:
    return section_type.load_from_parent(parent)  # type: ignore[attr-defined]


def extract_optional_section(section_type: Type[S], parent: IniFile) -> Optional[S]:
    """Optional sections that fail to parse are reported and treated as absent."""
    try:
        return section_type.load_from_parent(parent)  # type: ignore[attr-defined]
    except CarError as exc:
        logger.warning("Ignoring %s in %s. %s", section_type.__name__, parent.filename, exc)
        return None
