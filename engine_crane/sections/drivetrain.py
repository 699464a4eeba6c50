from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Sequence

from ..data_interface import DataInterface
from ..errors import InvalidUpdate
from ..ini_parser import get_mandatory_property, get_value, parse_int, set_float, set_value
from .base import IniFile

DRIVETRAIN_INI = 'drivetrain.ini'


class DrivetrainIni(IniFile):
    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> 'DrivetrainIni':
        return cls.load(data_interface, DRIVETRAIN_INI)


class DriveType(str, enum.Enum):
    RWD = 'RWD'
    FWD = 'FWD'
    AWD = 'AWD'
    AWD2 = 'AWD2'

    @property
    def mechanical_efficiency(self) -> float:
        return _MECHANICAL_EFFICIENCY[self]


_MECHANICAL_EFFICIENCY = {
    DriveType.RWD: 0.85,
    DriveType.FWD: 0.9,
    DriveType.AWD: 0.75,
    DriveType.AWD2: 0.75,
}


@dataclass
class Traction:
    drive_type: DriveType

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'Traction':
        return cls(get_mandatory_property(parent.ini, 'TRACTION', 'TYPE', DriveType, parent.filename))

    def update_car_data(self, parent: IniFile) -> None:
        set_value(parent.ini, 'TRACTION', 'TYPE', self.drive_type.value)


def _gear_key(gear_num: int) -> str:
    return f"GEAR_{gear_num}"


@dataclass
class Gearbox:
    """
    ``GEARS`` and ``GEARBOX``. Gear count is always derived from the ratio
    list; a shrinking count removes the ``GEAR_<n>`` keys that fall away.
    """

    reverse_gear_ratio: float
    final_gear_ratio: float
    gear_ratios: List[float] = field(default_factory=list)
    change_up_time: int = 0
    change_dn_time: int = 0
    auto_cutoff_time: int = 0
    supports_shifter: int = 0
    valid_shift_rpm_window: int = 0
    controls_window_gain: float = 0.0
    inertia: float = 0.0
    gear_count: int = -1

    def __post_init__(self) -> None:
        if self.gear_count < 0:
            self.gear_count = len(self.gear_ratios)

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'Gearbox':
        ini, f = parent.ini, parent.filename
        count = get_mandatory_property(ini, 'GEARS', 'COUNT', parse_int, f)
        ratios = [get_mandatory_property(ini, 'GEARS', _gear_key(n), float, f) for n in range(1, count + 1)]
        return cls(
            reverse_gear_ratio=get_mandatory_property(ini, 'GEARS', 'GEAR_R', float, f),
            final_gear_ratio=get_mandatory_property(ini, 'GEARS', 'FINAL', float, f),
            gear_ratios=ratios,
            change_up_time=get_mandatory_property(ini, 'GEARBOX', 'CHANGE_UP_TIME', parse_int, f),
            change_dn_time=get_mandatory_property(ini, 'GEARBOX', 'CHANGE_DN_TIME', parse_int, f),
            auto_cutoff_time=get_mandatory_property(ini, 'GEARBOX', 'AUTO_CUTOFF_TIME', parse_int, f),
            supports_shifter=get_mandatory_property(ini, 'GEARBOX', 'SUPPORTS_SHIFTER', parse_int, f),
            valid_shift_rpm_window=get_mandatory_property(ini, 'GEARBOX', 'VALID_SHIFT_RPM_WINDOW', parse_int, f),
            controls_window_gain=get_mandatory_property(ini, 'GEARBOX', 'CONTROLS_WINDOW_GAIN', float, f),
            inertia=get_mandatory_property(ini, 'GEARBOX', 'INERTIA', float, f),
            gear_count=count,
        )

    def update_gears(self, gear_ratios: Sequence[float]) -> None:
        self.gear_ratios = list(gear_ratios)
        self.gear_count = len(self.gear_ratios)

    def num_gears(self) -> int:
        return len(self.gear_ratios)

    def final_drive(self) -> float:
        return self.final_gear_ratio

    def update_final_drive(self, ratio: float) -> None:
        self.final_gear_ratio = ratio

    def update_car_data(self, parent: IniFile) -> None:
        ini = parent.ini
        if self.gear_count != len(self.gear_ratios):
            raise InvalidUpdate("gear count doesn't match stored ratios")
        current_count = get_value(ini, 'GEARS', 'COUNT', parse_int)
        if current_count is not None:
            for gear_num in range(self.gear_count + 1, current_count + 1):
                ini.remove_value('GEARS', _gear_key(gear_num))
        set_value(ini, 'GEARS', 'COUNT', self.gear_count)
        for gear_num, ratio in enumerate(self.gear_ratios, start=1):
            set_float(ini, 'GEARS', _gear_key(gear_num), ratio, 3)
        set_float(ini, 'GEARS', 'GEAR_R', self.reverse_gear_ratio, 3)
        set_float(ini, 'GEARS', 'FINAL', self.final_gear_ratio, 3)
        set_value(ini, 'GEARBOX', 'CHANGE_UP_TIME', self.change_up_time)
        set_value(ini, 'GEARBOX', 'CHANGE_DN_TIME', self.change_dn_time)
        set_value(ini, 'GEARBOX', 'AUTO_CUTOFF_TIME', self.auto_cutoff_time)
        set_value(ini, 'GEARBOX', 'SUPPORTS_SHIFTER', self.supports_shifter)
        set_value(ini, 'GEARBOX', 'VALID_SHIFT_RPM_WINDOW', self.valid_shift_rpm_window)
        set_float(ini, 'GEARBOX', 'CONTROLS_WINDOW_GAIN', self.controls_window_gain, 2)
        set_float(ini, 'GEARBOX', 'INERTIA', self.inertia, 3)


@dataclass
class Clutch:
    max_torque: int

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'Clutch':
        return cls(get_mandatory_property(parent.ini, 'CLUTCH', 'MAX_TORQUE', parse_int, parent.filename))

    def update_car_data(self, parent: IniFile) -> None:
        set_value(parent.ini, 'CLUTCH', 'MAX_TORQUE', self.max_torque)


@dataclass
class ShiftPoints:
    """UP/DOWN shift rpms with slip threshold and gas cutoff; shared by drivetrain.ini and ai.ini."""

    up: int
    down: int
    slip_threshold: float
    gas_cutoff_time: float

    SECTION_NAME = 'AUTO_SHIFTER'

    @classmethod
    def load_from_parent(cls, parent: IniFile):
        ini, s, f = parent.ini, cls.SECTION_NAME, parent.filename
        return cls(
            up=get_mandatory_property(ini, s, 'UP', parse_int, f),
            down=get_mandatory_property(ini, s, 'DOWN', parse_int, f),
            slip_threshold=get_mandatory_property(ini, s, 'SLIP_THRESHOLD', float, f),
            gas_cutoff_time=get_mandatory_property(ini, s, 'GAS_CUTOFF_TIME', float, f),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.SECTION_NAME
        set_value(ini, s, 'UP', self.up)
        set_value(ini, s, 'DOWN', self.down)
        set_float(ini, s, 'SLIP_THRESHOLD', self.slip_threshold, 2)
        set_float(ini, s, 'GAS_CUTOFF_TIME', self.gas_cutoff_time, 2)

    def set_shift_points_for_limiter(self, limiter: int) -> None:
        self.up = (limiter // 100) * 97
        self.down = (limiter // 100) * 70


class AutoShifter(ShiftPoints):
    SECTION_NAME = 'AUTO_SHIFTER'
