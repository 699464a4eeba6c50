from __future__ import annotations

import enum
from typing import Optional

from ..data_interface import DataInterface
from ..ini_parser import get_value, parse_int, set_float, set_value
from .base import IniFile

CAR_INI = 'car.ini'


class CarVersion(str, enum.Enum):
    ONE = '1'
    TWO = '2'
    CSP_EXTENDED_PHYSICS = 'extended-2'


class CarIniData(IniFile):
    """Top level descriptors from ``car.ini``."""

    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> 'CarIniData':
        return cls.load(data_interface, CAR_INI)

    def version(self) -> Optional[CarVersion]:
        return get_value(self.ini, 'HEADER', 'VERSION', CarVersion)

    def set_version(self, version: CarVersion) -> None:
        set_value(self.ini, 'HEADER', 'VERSION', version.value)

    def screen_name(self) -> Optional[str]:
        return get_value(self.ini, 'INFO', 'SCREEN_NAME')

    def set_screen_name(self, name: str) -> None:
        set_value(self.ini, 'INFO', 'SCREEN_NAME', name)

    def total_mass(self) -> Optional[int]:
        return get_value(self.ini, 'BASIC', 'TOTALMASS', parse_int)

    def set_total_mass(self, mass: int) -> None:
        set_value(self.ini, 'BASIC', 'TOTALMASS', mass)

    def default_fuel(self) -> Optional[int]:
        return get_value(self.ini, 'FUEL', 'FUEL', parse_int)

    def max_fuel(self) -> Optional[int]:
        return get_value(self.ini, 'FUEL', 'MAX_FUEL', parse_int)

    def fuel_consumption(self) -> Optional[float]:
        return get_value(self.ini, 'FUEL', 'CONSUMPTION', float)

    def set_fuel_consumption(self, consumption: float) -> None:
        set_float(self.ini, 'FUEL', 'CONSUMPTION', consumption, 4)

    def clear_fuel_consumption(self) -> None:
        self.ini.remove_value('FUEL', 'CONSUMPTION')
