"""
Typed views over ``engine.ini`` and the per-turbo ``ctrl_turbo<i>.ini`` files.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..data_interface import DataInterface
from ..errors import InvalidCar
from ..ini_parser import (Ini, get_mandatory_property, get_value, parse_int, set_float,
                          set_optional_value, set_value)
from ..lut_parser import InlineLut, LutProperty
from .base import IniFile

logger = logging.getLogger(__name__)

ENGINE_INI = 'engine.ini'


class EngineIni(IniFile):
    @classmethod
    def from_data_interface(cls, data_interface: DataInterface) -> 'EngineIni':
        return cls.load(data_interface, ENGINE_INI)


@dataclass
class EngineData:
    altitude_sensitivity: float
    inertia: float
    limiter: int
    limiter_hz: int
    minimum: int

    SECTION_NAME = 'ENGINE_DATA'

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'EngineData':
        ini, s = parent.ini, cls.SECTION_NAME
        return cls(
            altitude_sensitivity=get_mandatory_property(ini, s, 'ALTITUDE_SENSITIVITY', float, parent.filename),
            inertia=get_mandatory_property(ini, s, 'INERTIA', float, parent.filename),
            limiter=get_mandatory_property(ini, s, 'LIMITER', parse_int, parent.filename),
            limiter_hz=get_mandatory_property(ini, s, 'LIMITER_HZ', parse_int, parent.filename),
            minimum=get_mandatory_property(ini, s, 'MINIMUM', parse_int, parent.filename),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.SECTION_NAME
        set_float(ini, s, 'ALTITUDE_SENSITIVITY', self.altitude_sensitivity, 2)
        set_float(ini, s, 'INERTIA', self.inertia, 3)
        set_value(ini, s, 'LIMITER', self.limiter)
        set_value(ini, s, 'LIMITER_HZ', self.limiter_hz)
        set_value(ini, s, 'MINIMUM', self.minimum)


class PowerCurve:
    """The rpm -> torque LUT named by ``HEADER.POWER_CURVE``."""

    def __init__(self, power_lut: LutProperty) -> None:
        self.power_lut = power_lut

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'PowerCurve':
        try:
            lut = LutProperty.mandatory_from_ini('HEADER', 'POWER_CURVE', parent.ini, parent.data_interface,
                                                 key_type=parse_int, value_type=float,
                                                 filename=parent.filename)
        except InvalidCar as exc:
            raise InvalidCar(f"Failed to load power curve lut from ini. {exc}") from exc
        return cls(lut)

    def update(self, curve: Sequence[Tuple[int, float]]) -> List[Tuple[int, float]]:
        return self.power_lut.update(list(curve))  # type: ignore[return-value]

    def to_vec(self) -> List[Tuple[int, float]]:
        return self.power_lut.to_vec()  # type: ignore[return-value]

    def update_car_data(self, parent: IniFile) -> None:
        self.power_lut.update_car_data(parent.ini, parent.data_interface)


class CoastSource(str, enum.Enum):
    FROM_COAST_REF = 'FROM_COAST_REF'

    @property
    def section_name(self) -> str:
        return 'COAST_REF'


@dataclass
class CoastCurve:
    reference_rpm: int
    torque: int
    non_linearity: float
    source: CoastSource = CoastSource.FROM_COAST_REF

    @classmethod
    def new_from_coast_ref(cls, reference_rpm: int, torque: int, non_linearity: float) -> 'CoastCurve':
        return cls(reference_rpm, torque, non_linearity, CoastSource.FROM_COAST_REF)

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'CoastCurve':
        ini = parent.ini
        source = get_mandatory_property(ini, 'HEADER', 'COAST_CURVE', CoastSource, parent.filename)
        s = source.section_name
        return cls(
            reference_rpm=get_mandatory_property(ini, s, 'RPM', parse_int, parent.filename),
            torque=get_mandatory_property(ini, s, 'TORQUE', parse_int, parent.filename),
            non_linearity=get_mandatory_property(ini, s, 'NON_LINEARITY', float, parent.filename),
            source=source,
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.source.section_name
        set_value(ini, 'HEADER', 'COAST_CURVE', self.source.value)
        set_value(ini, s, 'RPM', self.reference_rpm)
        set_value(ini, s, 'TORQUE', self.torque)
        set_float(ini, s, 'NON_LINEARITY', self.non_linearity, 2)


@dataclass
class Damage:
    rpm_threshold: int
    rpm_damage_k: int
    turbo_boost_threshold: Optional[float] = None
    turbo_damage_k: Optional[int] = None

    SECTION_NAME = 'DAMAGE'

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> 'Damage':
        ini, s = parent.ini, cls.SECTION_NAME
        return cls(
            rpm_threshold=get_mandatory_property(ini, s, 'RPM_THRESHOLD', parse_int, parent.filename),
            rpm_damage_k=get_mandatory_property(ini, s, 'RPM_DAMAGE_K', parse_int, parent.filename),
            turbo_boost_threshold=get_value(ini, s, 'TURBO_BOOST_THRESHOLD', float),
            turbo_damage_k=get_value(ini, s, 'TURBO_DAMAGE_K', parse_int),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.SECTION_NAME
        set_value(ini, s, 'RPM_THRESHOLD', self.rpm_threshold)
        set_value(ini, s, 'RPM_DAMAGE_K', self.rpm_damage_k)
        set_optional_value(ini, s, 'TURBO_BOOST_THRESHOLD', self.turbo_boost_threshold, 2)
        set_optional_value(ini, s, 'TURBO_DAMAGE_K', self.turbo_damage_k)


@dataclass
class TurboSection:
    index: int
    lag_dn: float = 0.99
    lag_up: float = 0.965
    max_boost: float = 1.0
    wastegate: float = 1.0
    display_max_boost: float = 1.0
    reference_rpm: int = 3000
    gamma: float = 1.0
    cockpit_adjustable: int = 0

    @staticmethod
    def get_ini_section_name(idx: int) -> str:
        return f"TURBO_{idx}"

    @property
    def section_name(self) -> str:
        return self.get_ini_section_name(self.index)

    @classmethod
    def load_from_parent(cls, idx: int, parent: IniFile) -> 'TurboSection':
        ini, s, f = parent.ini, cls.get_ini_section_name(idx), parent.filename
        return cls(
            index=idx,
            lag_dn=get_mandatory_property(ini, s, 'LAG_DN', float, f),
            lag_up=get_mandatory_property(ini, s, 'LAG_UP', float, f),
            max_boost=get_mandatory_property(ini, s, 'MAX_BOOST', float, f),
            wastegate=get_mandatory_property(ini, s, 'WASTEGATE', float, f),
            display_max_boost=get_mandatory_property(ini, s, 'DISPLAY_MAX_BOOST', float, f),
            reference_rpm=get_mandatory_property(ini, s, 'REFERENCE_RPM', parse_int, f),
            gamma=get_mandatory_property(ini, s, 'GAMMA', float, f),
            cockpit_adjustable=get_mandatory_property(ini, s, 'COCKPIT_ADJUSTABLE', parse_int, f),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.section_name
        set_float(ini, s, 'LAG_DN', self.lag_dn, 3)
        set_float(ini, s, 'LAG_UP', self.lag_up, 3)
        set_float(ini, s, 'MAX_BOOST', self.max_boost, 2)
        set_float(ini, s, 'WASTEGATE', self.wastegate, 2)
        set_float(ini, s, 'DISPLAY_MAX_BOOST', self.display_max_boost, 2)
        set_value(ini, s, 'REFERENCE_RPM', self.reference_rpm)
        set_float(ini, s, 'GAMMA', self.gamma, 2)
        set_value(ini, s, 'COCKPIT_ADJUSTABLE', self.cockpit_adjustable)

    def delete_from_car_data(self, parent: IniFile) -> None:
        parent.ini.remove_section(self.section_name)


@dataclass
class Turbo:
    """
    Every ``TURBO_<i>`` section plus the optional blow-off valve threshold.

    Sections are counted from index 0 up to the first missing one.
    """

    bov_pressure_threshold: Optional[float] = None
    sections: List[TurboSection] = field(default_factory=list)

    @staticmethod
    def count_turbo_sections(ini: Ini) -> int:
        count = 0
        while ini.contains_section(TurboSection.get_ini_section_name(count)):
            count += 1
        return count

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> Optional['Turbo']:
        count = cls.count_turbo_sections(parent.ini)
        if count == 0:
            return None
        return cls(
            bov_pressure_threshold=get_value(parent.ini, 'BOV', 'PRESSURE_THRESHOLD', float),
            sections=[TurboSection.load_from_parent(idx, parent) for idx in range(count)],
        )

    def set_bov_threshold(self, threshold: float) -> None:
        self.bov_pressure_threshold = threshold

    def clear_bov_threshold(self) -> None:
        self.bov_pressure_threshold = None

    def add_section(self, section: TurboSection) -> None:
        self.sections.append(section)

    def clear_sections(self) -> None:
        self.sections.clear()

    def delete_from_car_data(self, parent: IniFile) -> None:
        """Remove every turbo, its controller file and the BOV section."""
        for section in self.sections:
            section.delete_from_car_data(parent)
            TurboControllerFile.delete_from_data_interface(parent.data_interface, section.index)
        self.sections.clear()
        parent.ini.remove_section('BOV')

    def update_car_data(self, parent: IniFile) -> None:
        for idx in range(self.count_turbo_sections(parent.ini)):
            parent.ini.remove_section(TurboSection.get_ini_section_name(idx))
        if self.bov_pressure_threshold is not None:
            set_float(parent.ini, 'BOV', 'PRESSURE_THRESHOLD', self.bov_pressure_threshold, 2)
        else:
            parent.ini.remove_section('BOV')
        for section in self.sections:
            section.update_car_data(parent)


class ControllerInput(str, enum.Enum):
    RPMS = 'RPMS'
    GAS = 'GAS'
    GEAR = 'GEAR'


class ControllerCombinator(str, enum.Enum):
    ADD = 'ADD'
    MULT = 'MULT'


class TurboController:
    """One ``CONTROLLER_<j>`` section of a turbo controller file."""

    def __init__(self, index: int, input: ControllerInput, combinator: ControllerCombinator,
                 lut: LutProperty, filter: float, up_limit: float, down_limit: float) -> None:
        self.index = index
        self.input = input
        self.combinator = combinator
        self.lut = lut
        self.filter = filter
        self.up_limit = up_limit
        self.down_limit = down_limit

    @staticmethod
    def get_controller_section_name(index: int) -> str:
        return f"CONTROLLER_{index}"

    @property
    def section_name(self) -> str:
        return self.get_controller_section_name(self.index)

    @classmethod
    def new(cls, index: int, input: ControllerInput, combinator: ControllerCombinator,
            lut: Sequence[Tuple[float, float]], filter: float, up_limit: float,
            down_limit: float) -> 'TurboController':
        lut_property = LutProperty(cls.get_controller_section_name(index), 'LUT', InlineLut(list(lut)))
        return cls(index, input, combinator, lut_property, filter, up_limit, down_limit)

    @classmethod
    def load_from_parent(cls, idx: int, parent: IniFile) -> 'TurboController':
        ini, s, f = parent.ini, cls.get_controller_section_name(idx), parent.filename
        try:
            lut = LutProperty.mandatory_from_ini(s, 'LUT', ini, parent.data_interface, filename=f)
        except InvalidCar as exc:
            raise InvalidCar(f"Failed to load turbo controller with index {idx}: {exc}") from exc
        return cls(
            index=idx,
            input=get_mandatory_property(ini, s, 'INPUT', ControllerInput, f),
            combinator=get_mandatory_property(ini, s, 'COMBINATOR', ControllerCombinator, f),
            lut=lut,
            filter=get_mandatory_property(ini, s, 'FILTER', float, f),
            up_limit=get_mandatory_property(ini, s, 'UP_LIMIT', float, f),
            down_limit=get_mandatory_property(ini, s, 'DOWN_LIMIT', float, f),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.section_name
        set_value(ini, s, 'INPUT', self.input.value)
        set_value(ini, s, 'COMBINATOR', self.combinator.value)
        set_float(ini, s, 'FILTER', self.filter, 3)
        set_value(ini, s, 'UP_LIMIT', self.up_limit)
        set_value(ini, s, 'DOWN_LIMIT', self.down_limit)
        self.lut.update_car_data(ini, parent.data_interface)

    def delete(self, parent: IniFile) -> None:
        self.lut.delete_from_car_data(parent.ini, parent.data_interface)
        parent.ini.remove_section(self.section_name)


class TurboControllerFile(IniFile):
    def __init__(self, data_interface: DataInterface, turbo_index: int, ini: Optional[Ini] = None) -> None:
        super().__init__(data_interface, self.get_controller_ini_filename(turbo_index), ini)
        self.turbo_index = turbo_index

    @staticmethod
    def get_controller_ini_filename(index: int) -> str:
        return f"ctrl_turbo{index}.ini"

    @classmethod
    def from_data_interface(cls, data_interface: DataInterface, turbo_index: int) -> Optional['TurboControllerFile']:
        data = data_interface.get(cls.get_controller_ini_filename(turbo_index))
        if data is None:
            return None
        return cls(data_interface, turbo_index, Ini.load_from_bytes(data))

    def num_controller_sections(self) -> int:
        count = 0
        while self.ini.contains_section(TurboController.get_controller_section_name(count)):
            count += 1
        return count

    def controllers(self) -> List[TurboController]:
        return [TurboController.load_from_parent(idx, self) for idx in range(self.num_controller_sections())]

    def delete_all_controller_sections(self) -> None:
        for controller in self.controllers():
            controller.delete(self)

    @classmethod
    def delete_from_data_interface(cls, data_interface: DataInterface, turbo_index: int) -> None:
        """Remove the controller file along with any LUT files its controllers reference."""
        ctrl_file = cls.from_data_interface(data_interface, turbo_index)
        if ctrl_file is not None:
            ctrl_file.delete_all_controller_sections()
        data_interface.remove(cls.get_controller_ini_filename(turbo_index))


def delete_all_turbo_controllers(data_interface: DataInterface) -> None:
    idx = 0
    while data_interface.contains(TurboControllerFile.get_controller_ini_filename(idx)):
        logger.info("Deleting %s", TurboControllerFile.get_controller_ini_filename(idx))
        TurboControllerFile.delete_from_data_interface(data_interface, idx)
        idx += 1


@dataclass
class ExtendedFuelConsumptionBaseData:
    idle_throttle: Optional[float] = None
    idle_cutoff: Optional[int] = None
    mechanical_efficiency: Optional[float] = None

    SECTION_NAME = 'ENGINE_DATA'

    @classmethod
    def load_from_ini(cls, ini: Ini) -> 'ExtendedFuelConsumptionBaseData':
        s = cls.SECTION_NAME
        return cls(
            idle_throttle=get_value(ini, s, 'IDLE_THROTTLE', float),
            idle_cutoff=get_value(ini, s, 'IDLE_CUTOFF', parse_int),
            mechanical_efficiency=get_value(ini, s, 'MECHANICAL_EFFICIENCY', float),
        )

    def update_car_data(self, parent: IniFile) -> None:
        ini, s = parent.ini, self.SECTION_NAME
        set_optional_value(ini, s, 'IDLE_THROTTLE', self.idle_throttle, 3)
        set_optional_value(ini, s, 'IDLE_CUTOFF', self.idle_cutoff)
        set_optional_value(ini, s, 'MECHANICAL_EFFICIENCY', self.mechanical_efficiency, 3)


class FuelConsumptionFlowRate:
    """CSP extended-physics fuel model: a max flow plus an optional rpm -> kg/h LUT."""

    SECTION_NAME = 'FUEL_CONSUMPTION'

    def __init__(self, base_data: ExtendedFuelConsumptionBaseData,
                 max_fuel_flow_lut: Optional[LutProperty], max_fuel_flow: int) -> None:
        self.base_data = base_data
        self.max_fuel_flow_lut = max_fuel_flow_lut
        self.max_fuel_flow = max_fuel_flow

    @classmethod
    def new(cls, idle_throttle: float, idle_cutoff: int, mechanical_efficiency: float,
            max_fuel_flow_lut: Optional[Sequence[Tuple[int, int]]],
            max_fuel_flow: int) -> 'FuelConsumptionFlowRate':
        lut = None
        if max_fuel_flow_lut is not None:
            lut = LutProperty(cls.SECTION_NAME, 'MAX_FUEL_FLOW_LUT', InlineLut(list(max_fuel_flow_lut)))
        return cls(ExtendedFuelConsumptionBaseData(idle_throttle, idle_cutoff, mechanical_efficiency),
                   lut, max_fuel_flow)

    @classmethod
    def load_from_parent(cls, parent: IniFile) -> Optional['FuelConsumptionFlowRate']:
        ini = parent.ini
        if not ini.contains_section(cls.SECTION_NAME):
            return None
        lut = LutProperty.optional_from_ini(cls.SECTION_NAME, 'MAX_FUEL_FLOW_LUT', ini, parent.data_interface,
                                            key_type=parse_int, value_type=parse_int)
        max_fuel_flow = get_value(ini, cls.SECTION_NAME, 'MAX_FUEL_FLOW', parse_int) or 0
        return cls(ExtendedFuelConsumptionBaseData.load_from_ini(ini), lut, max_fuel_flow)

    def lut_entries(self) -> List[Tuple[int, int]]:
        if self.max_fuel_flow_lut is None:
            return []
        return self.max_fuel_flow_lut.to_vec()  # type: ignore[return-value]

    def update_car_data(self, parent: IniFile) -> None:
        self.base_data.update_car_data(parent)
        ini = parent.ini
        ini.remove_section(self.SECTION_NAME)
        set_value(ini, self.SECTION_NAME, 'MAX_FUEL_FLOW', self.max_fuel_flow)
        set_value(ini, self.SECTION_NAME, 'LOG_FUEL_FLOW', 0)
        if self.max_fuel_flow_lut is not None:
            self.max_fuel_flow_lut.update_car_data(ini, parent.data_interface)
