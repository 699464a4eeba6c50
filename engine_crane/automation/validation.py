"""
Cross-check an exported ``.car`` file against the sandbox row it claims to be.

BeamNG mods embed the ``.car`` blob at export time; if the engine was
edited afterwards the sandbox and the mod disagree. Every difference is
collected so the user sees all of them at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from ..errors import CarFileAccessError, ValidationError
from ..numeric import format_number, round_float_to, round_half_away
from .car_file import CarFile, Section
from .sandbox import EngineV1

logger = logging.getLogger(__name__)

LEGACY_CAR_VERSION = 2200000000
FLOAT_PRECISION = 10

Number = Union[int, float]


@dataclass
class Discrepancy:
    section: str
    key: str
    message: str

    def __str__(self) -> str:
        return self.message


class AutomationSandboxCrossChecker:
    def __init__(self, car_file: CarFile, sandbox_data: EngineV1,
                 float_precision: int = FLOAT_PRECISION) -> None:
        self.car_file = car_file
        self.sandbox_data = sandbox_data
        self.float_precision = float_precision
        self._found: List[Discrepancy] = []

    def is_legacy(self) -> bool:
        car = self.car_file.get_section('Car')
        version = car.get_attribute('Version') if car is not None else None
        if version is None:
            return False
        try:
            return round_half_away(version.value.as_num()) < LEGACY_CAR_VERSION
        except CarFileAccessError:
            return False

    def validate(self) -> List[Discrepancy]:
        """Returns every difference found; an empty list means the two agree."""
        self._found = []
        car = self.car_file.get_section('Car')
        if car is None:
            return [Discrepancy('Car', '', "Failed to find Car section in .car file")]
        family = car.get_section('Family')
        variant = car.get_section('Variant')
        if family is None:
            self._found.append(Discrepancy('Car', 'Family', "Failed to find Car.Family section in .car file"))
        if variant is None:
            self._found.append(Discrepancy('Car', 'Variant', "Failed to find Car.Variant section in .car file"))

        legacy = self.is_legacy()
        if family is not None:
            self._validate_family(family, legacy)
        if variant is not None:
            self._validate_variant(variant, legacy)
            self._validate_results(variant)
        for discrepancy in self._found:
            logger.warning("Sandbox mismatch. %s", discrepancy)
        return list(self._found)

    def validate_or_raise(self) -> None:
        discrepancies = self.validate()
        if discrepancies:
            raise ValidationError(discrepancies)

    def _validate_family(self, family: Section, legacy: bool) -> None:
        s = self.sandbox_data
        self.check_int(s.family_version, family, 'GameVersion')
        self.check_str(s.family_uuid, family, 'UID')
        self.check_str(s.family_name, family, 'Name')
        self.check_int(s.family_game_days, family, 'InternalDays')
        if not legacy:
            self.check_int(s.family_quality, family, 'QualityFamily')
        self.check_str(s.block_config, family, 'BlockConfig')
        self.check_str(s.block_material, family, 'BlockMaterial')
        self.check_str(s.block_type, family, 'BlockType')
        self.check_str(s.head_type, family, 'Head')
        self.check_str(s.head_material, family, 'HeadMaterial')
        if legacy:
            self.check_str(s.vvl, family, 'VVL')
        self.check_str(s.valves, family, 'Valves')
        self.check_float(s.max_stroke, family, 'Stroke')
        self.check_float(s.max_bore, family, 'Bore')

    def _validate_variant(self, variant: Section, legacy: bool) -> None:
        s = self.sandbox_data
        self.check_int(s.variant_version, variant, 'GameVersion')
        self.check_str(s.family_uuid, variant, 'FUID')
        self.check_str(s.uuid, variant, 'UID')
        self.check_str(s.variant_name, variant, 'Name')
        self.check_int(s.variant_game_days, variant, 'InternalDays')
        if not legacy:
            self.check_str(s.vvl, variant, 'VVL')
        self.check_str(s.crank, variant, 'Crank')
        self.check_str(s.conrods, variant, 'Conrods')
        self.check_str(s.pistons, variant, 'Pistons')
        self.check_str(s.vvt, variant, 'VVT')
        self.check_str(s.aspiration, variant, 'AspirationType')
        self.check_float(s.intercooler_setting, variant, 'IntercoolerSetting')
        self.check_str(s.fuel_system_type, variant, 'FuelSystemType')
        self.check_str(s.fuel_system, variant, 'FuelSystem')
        self._check_optional(self.check_str, s.fuel_type, variant, 'FuelType')
        if not legacy:
            self._check_optional(self.check_int, s.fuel_leaded, variant, 'FuelLeaded')
        self.check_str(s.intake_manifold, variant, 'IntakeManifold')
        self.check_str(s.intake, variant, 'Intake')
        self.check_str(s.headers, variant, 'Headers')
        self.check_str(s.exhaust_count, variant, 'ExhaustCount')
        self.check_str(s.exhaust_bypass_valves, variant, 'ExhaustBypassValves')
        self.check_str(s.cat, variant, 'Cat')
        self.check_str(s.muffler_1, variant, 'Muffler1')
        self.check_str(s.muffler_2, variant, 'Muffler2')
        self.check_float(s.bore, variant, 'Bore')
        self.check_float(s.stroke, variant, 'Stroke')
        self.check_float(s.capacity, variant, 'Capacity')
        self.check_float(s.compression, variant, 'Compression')
        self.check_float(s.cam_profile_setting, variant, 'CamProfileSetting')
        self.check_float(s.vvl_cam_profile_setting, variant, 'VVLCamProfileSetting')
        self._check_optional(self.check_float, s.afr, variant, 'AFR')
        self._check_optional(self.check_float, s.afr_lean, variant, 'AFRLean')
        self.check_float(s.rpm_limit, variant, 'RPMLimit')
        self.check_float(s.ignition_timing_setting, variant, 'IgnitionTimingSetting')
        self.check_float(s.exhaust_diameter, variant, 'ExhaustDiameter')
        self.check_int(s.quality_bottom_end, variant, 'QualityBottomEnd')
        self.check_int(s.quality_top_end, variant, 'QualityTopEnd')
        self.check_int(s.quality_aspiration, variant, 'QualityAspiration')
        self.check_int(s.quality_fuel_system, variant, 'QualityFuelSystem')
        self.check_int(s.quality_exhaust, variant, 'QualityExhaust')
        if legacy:
            return
        self._check_optional(self.check_str, s.balance_shaft, variant, 'BalanceShaft')
        self._check_optional(self.check_float, s.spring_stiffness, variant, 'SpringStiffnessSetting')
        self._check_optional(self.check_int, s.listed_octane, variant, 'ListedOctane')
        self._check_optional(self.check_int, s.tune_octane_offset, variant, 'TuneOctaneOffset')
        self._check_optional(self.check_str, s.aspiration_setup, variant, 'AspirationSetup')
        self._check_optional(self.check_str, s.aspiration_item_1, variant, 'AspirationItemOption_1')
        self._check_optional(self.check_str, s.aspiration_item_2, variant, 'AspirationItemOption_2')
        self._check_optional(self.check_str, s.aspiration_item_suboption_1, variant, 'AspirationItemSubOption_1')
        self._check_optional(self.check_str, s.aspiration_item_suboption_2, variant, 'AspirationItemSubOption_2')
        self._check_optional(self.check_str, s.aspiration_boost_control, variant, 'AspirationBoostControl')
        self._check_optional(self.check_float, s.charger_size_1, variant, 'ChargerSize_1')
        self._check_optional(self.check_float, s.charger_size_2, variant, 'ChargerSize_2')
        self._check_optional(self.check_float, s.charger_tune_1, variant, 'ChargerTune_1')
        self._check_optional(self.check_float, s.charger_tune_2, variant, 'ChargerTune_2')
        self._check_optional(self.check_float, s.charger_max_boost_1, variant, 'ChargerMaxBoost_1')
        self._check_optional(self.check_float, s.charger_max_boost_2, variant, 'ChargerMaxBoost_2')
        self._check_optional(self.check_float, s.turbine_size_1, variant, 'TurbineSize_1')
        self._check_optional(self.check_float, s.turbine_size_2, variant, 'TurbineSize_2')

    def _validate_results(self, variant: Section) -> None:
        # only checked when the export recorded them
        s = self.sandbox_data
        for key, expected in (('PeakPower', s.peak_power), ('PeakPowerRPM', s.peak_power_rpm),
                              ('PeakTorque', s.peak_torque), ('PeakTorqueRPM', s.peak_torque_rpm),
                              ('MaxRPM', s.max_rpm)):
            if variant.get_attribute(key) is not None:
                self.check_float(expected, variant, key)

    def _check_optional(self, check: Callable[[object, Section, str], None],
                        sandbox_value: Optional[object], section: Section, key: str) -> None:
        if sandbox_value is not None:
            check(sandbox_value, section, key)

    def _attribute(self, section: Section, key: str):
        attribute = section.get_attribute(key)
        if attribute is None:
            self._found.append(Discrepancy(section.name, key,
                                           f"Car file section {section.name} is missing attribute {key}"))
        else:
            logger.info("Checking %s", key)
        return attribute

    def _number(self, section: Section, key: str) -> Optional[float]:
        attribute = self._attribute(section, key)
        if attribute is None:
            return None
        try:
            return attribute.value.as_num()
        except CarFileAccessError:
            self._found.append(Discrepancy(section.name, key,
                                           f"{key}: expected a number but found {attribute.value}"))
            return None

    def _mismatch(self, section: Section, key: str, sandbox_value: object, car_value: object) -> None:
        self._found.append(Discrepancy(section.name, key, f"{key}: {sandbox_value} != {car_value}"))

    def check_str(self, sandbox_value: str, section: Section, key: str) -> None:
        attribute = self._attribute(section, key)
        if attribute is None:
            return
        car_value = attribute.value.as_str()
        if sandbox_value != car_value:
            self._mismatch(section, key, sandbox_value, car_value)

    def check_int(self, sandbox_value: int, section: Section, key: str) -> None:
        car_value = self._number(section, key)
        if car_value is None:
            return
        rounded = round_half_away(car_value)
        if sandbox_value != rounded:
            self._mismatch(section, key, sandbox_value, rounded)

    def check_float(self, sandbox_value: Number, section: Section, key: str) -> None:
        car_value = self._number(section, key)
        if car_value is None:
            return
        if round_float_to(sandbox_value, self.float_precision) != round_float_to(car_value, self.float_precision):
            self._mismatch(section, key, format_number(sandbox_value), format_number(car_value))
