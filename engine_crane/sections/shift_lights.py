from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..data_interface import DataInterface
from ..errors import InvalidCar
from ..ini_parser import Ini, get_mandatory_property, parse_int, set_float, set_value
from ..numeric import format_number, round_half_away
from .base import IniFile

logger = logging.getLogger(__name__)

DIGITAL_INSTRUMENTS_INI = 'digital_instruments.ini'


class DigitalInstrumentsIni(IniFile):
    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> Optional['DigitalInstrumentsIni']:
        return cls.load_optional(data_interface, DIGITAL_INSTRUMENTS_INI)


def get_as_rounded_percentage_of(num: float, of: float) -> int:
    return round_half_away((num / of) * 100)


def get_percentage_of(percentage: int, of: float) -> float:
    return of * (percentage / 100)


def round_to_nearest_hundred(value: float) -> int:
    """Anything under 1 is 0; otherwise halves round up to the next hundred."""
    if int(value) == 0:
        return 0
    return round_half_away(value / 100) * 100


def rescale_to_limiter(rpm: int, old_limiter: int, new_limiter: int) -> int:
    """Keep ``rpm`` at the same whole percentage of the limiter, to the nearest 100."""
    return round_to_nearest_hundred(get_percentage_of(get_as_rounded_percentage_of(rpm, old_limiter), new_limiter))


@dataclass
class Led:
    index: int
    object_name: str
    rpm_switch: int
    emissive: Tuple[float, float, float]
    diffuse: float
    blink_switch: int
    blink_hz: int

    @staticmethod
    def get_ini_section_name(idx: int) -> str:
        return f"LED_{idx}"

    @property
    def section_name(self) -> str:
        return self.get_ini_section_name(self.index)

    @classmethod
    def load_from_parent(cls, idx: int, parent: IniFile) -> 'Led':
        ini, s, f = parent.ini, cls.get_ini_section_name(idx), parent.filename
        emissive_str = get_mandatory_property(ini, s, 'EMISSIVE', str, f)
        try:
            emissive = tuple(float(part) for part in emissive_str.split(','))
        except ValueError as exc:
            raise InvalidCar(f"Cannot parse emissive elements. {exc}", section=s, key='EMISSIVE', filename=f) from exc
        if len(emissive) != 3:
            raise InvalidCar("Expected three emissive elements", section=s, key='EMISSIVE', filename=f)
        return cls(
            index=idx,
            object_name=get_mandatory_property(ini, s, 'OBJECT_NAME', str, f),
            rpm_switch=get_mandatory_property(ini, s, 'RPM_SWITCH', parse_int, f),
            emissive=emissive,  # type: ignore[arg-type]
            diffuse=get_mandatory_property(ini, s, 'DIFFUSE', float, f),
            blink_switch=get_mandatory_property(ini, s, 'BLINK_SWITCH', parse_int, f),
            blink_hz=get_mandatory_property(ini, s, 'BLINK_HZ', parse_int, f),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.section_name
        set_value(ini, s, 'OBJECT_NAME', self.object_name)
        set_value(ini, s, 'RPM_SWITCH', self.rpm_switch)
        set_value(ini, s, 'EMISSIVE', ','.join(format_number(v) for v in self.emissive))
        set_float(ini, s, 'DIFFUSE', self.diffuse, 2)
        set_value(ini, s, 'BLINK_SWITCH', self.blink_switch)
        set_value(ini, s, 'BLINK_HZ', self.blink_hz)


@dataclass
class ShiftLights:
    shift_leds: List[Led] = field(default_factory=list)

    @staticmethod
    def count_shift_leds(ini: Ini) -> int:
        count = 0
        while ini.contains_section(Led.get_ini_section_name(count)):
            count += 1
        return count

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> Optional['ShiftLights']:
        count = cls.count_shift_leds(parent.ini)
        if count == 0:
            return None
        return cls([Led.load_from_parent(idx, parent) for idx in range(count)])

    def num_leds(self) -> int:
        return len(self.shift_leds)

    def update_limiter(self, old_limiter: int, new_limiter: int) -> None:
        for led in self.shift_leds:
            if led.rpm_switch == old_limiter:
                led.rpm_switch = new_limiter
            else:
                led.rpm_switch = rescale_to_limiter(led.rpm_switch, old_limiter, new_limiter)

            if old_limiter < led.blink_switch < new_limiter:
                led.blink_switch = new_limiter + 100
            elif led.blink_switch == old_limiter:
                led.blink_switch = new_limiter
            else:
                led.blink_switch = rescale_to_limiter(led.blink_switch, old_limiter, new_limiter)

    def update_car_data(self, parent: IniFile) -> None:
        for led in self.shift_leds:
            led.update_car_data(parent)
