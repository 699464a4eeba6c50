"""
Turn crate engine data into Assetto Corsa engine parameters.

There is one calculator per payload kind. ``BeamNGModCalculator`` works
from the sandbox record plus the mod's main engine JBeam,
``DirectExportCalculator`` from the group-keyed data the in-game exporter
writes. Both expose the same set of operations so the fabricator doesn't
care which one it was handed.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .automation.car_file import CarFile, get_variant_section
from .automation.sandbox import EngineV1, SandboxVersion, load_engine_by_uuid
from .automation.validation import AutomationSandboxCrossChecker
from .beamng import ModData, find_engine_part, find_main_engine_jbeam_filename, loads_jbeam
from .crate_engine.container import CrateEngine
from .crate_engine.payload import BeamNGModDataV1, DirectExportDataV1
from .errors import (BeamNGModError, CarFileAccessError, CarFileDecodeError, CrateEngineError, FabricationError,
                     SandboxError, ValidationError)
from .numeric import clamp, kw_to_bhp, lerp, normal_lerp, round_float_to, round_half_away
from .sections.engine import (CoastCurve, ControllerCombinator, ControllerInput, Damage, FuelConsumptionFlowRate,
                              Turbo, TurboController, TurboSection)

logger = logging.getLogger(__name__)

FIRST_AL_RIMA_VERSION_NUM = 2412240000
EXPORT_RESPONSIVENESS_VERSION_NUM = 2507110000
COAST_V2_VERSION_NUM = 2209220000
COAST_V3_VERSION_NUM = 2301100000

# kJ/kg
GASOLINE_LHV = 43400.0
# kg/m3
FUEL_DENSITY = 750.0


def normalise_boost_value(boost_value: float, decimal_places: int) -> float:
    return round_float_to(max(0.0, boost_value), decimal_places)


def calculate_power_kw(rpm: float, torque: float) -> float:
    return torque * rpm * 2 * math.pi / 60000.0


def _missing(what: str, where: str) -> FabricationError:
    return FabricationError("Missing data", f"{what} not found in {where}")


def _taper(curve: List[Tuple[int, float]]) -> List[Tuple[int, float]]:
    """Add a half-torque point and then a zero point past the last sample."""
    if len(curve) < 2:
        raise FabricationError("Invalid data", "torque curve needs at least two samples")
    rpm_increment = curve[-1][0] - curve[-2][0]
    curve.append((curve[-1][0] + rpm_increment, curve[-1][1] / 2))
    curve.append((curve[-1][0] + rpm_increment, 0.0))
    return curve


class EngineParameterCalculator:
    """Interface every calculator offers."""

    @classmethod
    def from_crate_engine(cls, crate_eng_path: Path) -> 'EngineParameterCalculator':
        crate_eng_path = Path(crate_eng_path)
        logger.info("Creating AC parameter calculator for crate engine %s", crate_eng_path)
        try:
            crate_eng = CrateEngine.load(crate_eng_path)
        except CrateEngineError as exc:
            raise FabricationError(f"Failed to load {crate_eng_path}", str(exc)) from exc
        logger.info("Loaded %s from eng file", crate_eng.name)

        data = crate_eng.data
        if isinstance(data, DirectExportDataV1):
            return DirectExportCalculator(data)
        if not isinstance(data, BeamNGModDataV1):
            raise FabricationError("Unsupported crate engine", type(data).__name__)
        logger.info("Loading Automation car file")
        if not data.car_file_data:
            raise _missing("Automation car file", str(crate_eng_path))
        try:
            car_file = CarFile.from_bytes(data.car_file_data)
        except CarFileDecodeError as exc:
            raise FabricationError("Failed to load Automation car file", str(exc)) from exc
        logger.info("Loading main engine JBeam file")
        jbeam_bytes = data.main_engine_jbeam_data()
        if jbeam_bytes is None:
            raise _missing("Main engine JBeam file", str(crate_eng_path))
        try:
            jbeam = loads_jbeam(jbeam_bytes)
        except BeamNGModError as exc:
            raise FabricationError("Failed to load main engine JBeam", str(exc)) from exc
        return BeamNGModCalculator(car_file, jbeam, data.automation_data())

    @classmethod
    def from_beam_ng_mod(cls, mod_path: Path, db_path: Optional[Path] = None) -> 'EngineParameterCalculator':
        """Build a calculator straight from a mod zip, skipping the crate engine step."""
        mod_path = Path(mod_path)
        logger.info("Creating AC parameter calculator for BeamNG mod %s", mod_path)
        try:
            mod_data = ModData.from_path(mod_path)
        except BeamNGModError as exc:
            raise FabricationError("Failed to read BeamNG mod", str(exc)) from exc
        car_file_data = mod_data.get_automation_car_file_data()
        if car_file_data is None:
            raise _missing("Automation car file", str(mod_path))
        try:
            car_file = CarFile.from_bytes(car_file_data)
            variant = get_variant_section(car_file)
            version_attr = variant.get_attribute('GameVersion')
            uid_attr = variant.get_attribute('UID')
            if version_attr is None:
                raise _missing("'Car.Variant.GameVersion'", f"Automation .car file in {mod_path}")
            if uid_attr is None:
                raise _missing("'Car.Variant.UID'", f"Automation .car file in {mod_path}")
            version_num = int(version_attr.value.as_num())
            uid = uid_attr.value.as_str()
        except (CarFileDecodeError, CarFileAccessError) as exc:
            raise FabricationError("Failed to load Automation car file", str(exc)) from exc

        logger.info("Engine version number: %s", version_num)
        sandbox_version = SandboxVersion.from_version_number(version_num)
        logger.info("Deduced as %s", sandbox_version)
        logger.info("Engine uuid: %s", uid)

        jbeam_filename = find_main_engine_jbeam_filename(uid, mod_data.jbeam_filenames())
        if jbeam_filename is None:
            raise _missing("Main engine JBeam", str(mod_path))
        try:
            jbeam = mod_data.get_jbeam_data(jbeam_filename)
        except BeamNGModError as exc:
            raise FabricationError("Failed to load main engine JBeam", str(exc)) from exc

        try:
            engine = load_engine_by_uuid(uid, sandbox_version, db_path)
        except SandboxError as exc:
            raise FabricationError(f"Failed to load sandbox db engine {uid}", str(exc)) from exc
        if engine is None:
            raise _missing(f"engine {uid}", "sandbox db")
        try:
            AutomationSandboxCrossChecker(car_file, engine).validate_or_raise()
        except ValidationError as exc:
            raise FabricationError("Validation failed", str(exc)) from exc
        if not engine.rpm_curve:
            raise _missing("curve data", "sandbox db")
        return BeamNGModCalculator(car_file, jbeam, engine)

    def engine_weight(self) -> int:
        raise NotImplementedError

    def inertia(self) -> float:
        raise NotImplementedError

    def idle_speed(self) -> float:
        raise NotImplementedError

    def limiter(self) -> float:
        raise NotImplementedError

    def basic_fuel_consumption(self) -> float:
        raise NotImplementedError

    def fuel_flow_consumption(self, mechanical_efficiency: float) -> FuelConsumptionFlowRate:
        raise NotImplementedError

    def engine_torque_curve(self) -> List[Tuple[int, int]]:
        raise NotImplementedError

    def peak_torque(self) -> int:
        raise NotImplementedError

    def engine_bhp_power_curve(self) -> List[Tuple[int, int]]:
        raise NotImplementedError

    def peak_bhp(self) -> int:
        raise NotImplementedError

    def naturally_aspirated_wheel_torque_curve(self, drivetrain_efficiency: float) -> List[Tuple[int, float]]:
        raise NotImplementedError

    def get_max_boost_params(self, decimal_place_precision: int) -> Tuple[int, float]:
        raise NotImplementedError

    def create_turbo(self) -> Optional[Turbo]:
        raise NotImplementedError

    def create_turbo_controller(self) -> Optional[TurboController]:
        raise NotImplementedError

    def coast_data(self) -> CoastCurve:
        raise NotImplementedError

    def damage(self) -> Damage:
        raise NotImplementedError

    @staticmethod
    def _turbo(max_boost: float, reference_rpm: int, gamma: float) -> Turbo:
        turbo = Turbo()
        turbo.add_section(TurboSection(
            index=0,
            lag_dn=0.99,
            lag_up=0.965,
            max_boost=max_boost,
            wastegate=max_boost,
            display_max_boost=math.ceil(max_boost * 10) / 10,
            reference_rpm=reference_rpm,
            gamma=gamma,
            cockpit_adjustable=0,
        ))
        return turbo

    @staticmethod
    def _controller(lut: List[Tuple[float, float]]) -> TurboController:
        return TurboController.new(0, ControllerInput.RPMS, ControllerCombinator.ADD, lut, 0.95, 10000.0, 0.0)


class BeamNGModCalculator(EngineParameterCalculator):
    def __init__(self, automation_car_file: CarFile, engine_jbeam_data: Dict[str, Any],
                 engine_sqlite_data: EngineV1) -> None:
        self.automation_car_file = automation_car_file
        self.engine_jbeam_data = engine_jbeam_data
        self.engine_sqlite_data = engine_sqlite_data

    def _is_naturally_aspirated(self) -> bool:
        return self.engine_sqlite_data.aspiration.startswith('Aspiration_Natural')

    def _main_engine_map(self) -> Dict[str, Any]:
        key, part = find_engine_part(self.engine_jbeam_data)
        if part is None:
            raise _missing(key, "main jbeam engine file")
        main_engine = part.get('mainEngine')
        if not isinstance(main_engine, dict):
            raise _missing('mainEngine', "main jbeam engine file")
        return main_engine

    def _jbeam_float(self, key: str) -> float:
        value = self._main_engine_map().get(key)
        if value is None:
            raise _missing(key, 'mainEngine')
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FabricationError("Invalid data", f"{key} expected to be a number")
        return float(value)

    def engine_weight(self) -> int:
        return round_half_away(self.engine_sqlite_data.weight)

    def inertia(self) -> float:
        value = self._main_engine_map().get('inertia')
        if value is None:
            raise _missing('inertia', 'mainEngine')
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            # e.g. "$=0.15*$inertia_scale"
            trimmed = value.split('*$')[0].rsplit('$=')[-1]
            logger.debug("Trimmed inertia is %s", trimmed)
            try:
                return float(trimmed)
            except ValueError:
                raise FabricationError("Invalid data", f"inertia: couldn't parse a float from {value}") from None
        raise FabricationError("Invalid data", "inertia expected to be a float or string")

    def idle_speed(self) -> float:
        return max(self.engine_sqlite_data.idle_speed, self.engine_sqlite_data.rpm_curve[0])

    def limiter(self) -> float:
        return self.engine_sqlite_data.max_rpm

    def basic_fuel_consumption(self) -> float:
        engine = self.engine_sqlite_data
        fuel_use_per_hour = (engine.peak_power * engine.econ) / FUEL_DENSITY
        fuel_use_per_sec = fuel_use_per_hour / 3600
        # AC burns (rpm * gas * CONSUMPTION) / 1000 per second
        return (fuel_use_per_sec * 1000) / engine.peak_power_rpm

    def _fuel_use_per_sec_at_rpm(self, rpm_index: int) -> float:
        # econ curve is BSFC in g/kWh, power curve in kW
        engine = self.engine_sqlite_data
        return (engine.econ_curve[rpm_index] / 3600000) * (engine.power_curve[rpm_index] * 1000)

    def fuel_flow_consumption(self, mechanical_efficiency: float) -> FuelConsumptionFlowRate:
        rpm_curve = self.engine_sqlite_data.rpm_curve
        max_flow_index = min(round_half_away(len(rpm_curve) * 0.7), len(rpm_curve) - 1)
        max_fuel_flow = round_half_away(self._fuel_use_per_sec_at_rpm(max_flow_index) * 3.6)
        lut = [(int(rpm), round_half_away(self._fuel_use_per_sec_at_rpm(idx) * 3.6))
               for idx, rpm in enumerate(rpm_curve)]
        return FuelConsumptionFlowRate.new(0.03, round_half_away(self.idle_speed() + 100),
                                           mechanical_efficiency, lut, max_fuel_flow)

    def engine_torque_curve(self) -> List[Tuple[int, int]]:
        engine = self.engine_sqlite_data
        return [(int(rpm), round_half_away(engine.torque_curve[idx])) for idx, rpm in enumerate(engine.rpm_curve)]

    def peak_torque(self) -> int:
        return round_half_away(self.engine_sqlite_data.peak_torque)

    def engine_bhp_power_curve(self) -> List[Tuple[int, int]]:
        engine = self.engine_sqlite_data
        return [(int(rpm), round_half_away(kw_to_bhp(engine.power_curve[idx])))
                for idx, rpm in enumerate(engine.rpm_curve)]

    def peak_bhp(self) -> int:
        return round_half_away(kw_to_bhp(self.engine_sqlite_data.peak_power))

    def naturally_aspirated_wheel_torque_curve(self, drivetrain_efficiency: float) -> List[Tuple[int, float]]:
        engine = self.engine_sqlite_data
        out: List[Tuple[int, float]] = []
        if self._is_naturally_aspirated():
            logger.info("Writing torque curve for NA engine")
            for idx, rpm in enumerate(engine.rpm_curve):
                out.append((int(rpm), float(round_half_away(engine.torque_curve[idx] * drivetrain_efficiency))))
        else:
            logger.info("Writing torque curve for Turbo engine")
            for idx, rpm in enumerate(engine.rpm_curve):
                boost_pressure = max(0.0, engine.boost_curve[idx])
                adjusted = round_half_away((engine.torque_curve[idx] / (1 + boost_pressure)) * drivetrain_efficiency)
                logger.debug("Adjusted %s@%s for boost pressure %s to %s",
                             engine.torque_curve[idx], int(rpm), 1 + boost_pressure, adjusted)
                out.append((int(rpm), float(adjusted)))
        return _taper(out)

    def get_max_boost_params(self, decimal_place_precision: int) -> Tuple[int, float]:
        if self._is_naturally_aspirated():
            return 0, 0.0
        boost_curve = self.engine_sqlite_data.boost_curve
        ref_idx, max_boost = 0, normalise_boost_value(boost_curve[0], decimal_place_precision)
        for idx, value in enumerate(boost_curve):
            if normalise_boost_value(value, 2) > max_boost:
                if normalise_boost_value(value, 1) > normalise_boost_value(max_boost, 1):
                    ref_idx = idx
                max_boost = value
        return (round_half_away(self.engine_sqlite_data.rpm_curve[ref_idx]),
                round_float_to(max_boost, decimal_place_precision))

    def create_turbo(self) -> Optional[Turbo]:
        if self._is_naturally_aspirated():
            return None
        ref_rpm, max_boost = self.get_max_boost_params(3)
        return self._turbo(max_boost, ref_rpm, 2.5)

    def create_turbo_controller(self) -> Optional[TurboController]:
        if self._is_naturally_aspirated():
            return None
        engine = self.engine_sqlite_data
        lut = []
        for idx, rpm in enumerate(engine.rpm_curve):
            boost = engine.boost_curve[idx]
            lut.append((rpm, round_float_to(boost, 3) if boost > 0 else 0.0))
        return self._controller(lut)

    def _game_version(self) -> int:
        try:
            attr = get_variant_section(self.automation_car_file).get_attribute('GameVersion')
            if attr is None:
                raise _missing('GameVersion', 'Car.Variant')
            return int(attr.value.as_num())
        except CarFileAccessError as exc:
            raise FabricationError("Invalid data", f"Car.Variant.GameVersion. {exc}") from exc

    def coast_data(self) -> CoastCurve:
        max_rpm = self.engine_sqlite_data.max_rpm
        angular_velocity = (max_rpm * 2 * math.pi) / 60
        dynamic_friction = self._jbeam_float('dynamicFriction')
        version_num = self._game_version()
        if version_num < COAST_V2_VERSION_NUM:
            logger.info("Using v1 coast calculation for version %s", version_num)
            friction_torque = angular_velocity * dynamic_friction + 2 * self._jbeam_float('friction')
        elif version_num >= COAST_V3_VERSION_NUM:
            logger.info("Using v3 coast calculation for version %s", version_num)
            friction_torque = (angular_velocity * dynamic_friction + self._jbeam_float('engineBrakeTorque')
                               + self._jbeam_float('friction'))
        else:
            # friction and engineBrakeTorque are the same value in these exports; only one is counted
            logger.info("Using v2 coast calculation for version %s", version_num)
            friction_torque = angular_velocity * dynamic_friction + self._jbeam_float('engineBrakeTorque')
        return CoastCurve.new_from_coast_ref(round_half_away(max_rpm), round_half_away(friction_torque), 0.0)

    def damage(self) -> Damage:
        _, max_boost = self.get_max_boost_params(2)
        return Damage(
            rpm_threshold=round_half_away(self.limiter() + 200),
            rpm_damage_k=1,
            turbo_boost_threshold=float(math.ceil(max_boost)),
            turbo_damage_k=0 if self._is_naturally_aspirated() else 4,
        )


class DirectExportCalculator(EngineParameterCalculator):
    def __init__(self, eng_data: DirectExportDataV1) -> None:
        self.eng_data = eng_data

    def _float(self, group: str, key: str) -> float:
        try:
            return self.eng_data.lookup_float(group, key)
        except CrateEngineError as exc:
            raise FabricationError("Missing data", str(exc)) from exc

    def _string(self, group: str, key: str) -> str:
        try:
            return self.eng_data.lookup_string(group, key)
        except CrateEngineError as exc:
            raise FabricationError("Missing data", str(exc)) from exc

    def _curve(self, name: str) -> Dict[int, float]:
        try:
            return self.eng_data.lookup_curve(name)
        except CrateEngineError as exc:
            raise FabricationError("Missing data", str(exc)) from exc

    def game_version(self) -> float:
        try:
            return self.eng_data.lookup_float('Info', 'GameVersion')
        except CrateEngineError as exc:
            logger.warning("Failed to determine game version: %s", exc)
            return 0.0

    def engine_weight(self) -> int:
        return round_half_away(self._float('Results', 'Weight'))

    def inertia(self) -> float:
        if self.game_version() >= EXPORT_RESPONSIVENESS_VERSION_NUM:
            try:
                responsiveness = self.eng_data.lookup_float('Results', 'ExportResponsiveness')
                logger.info("Using ExportResponsiveness for inertia")
            except CrateEngineError:
                responsiveness = self._float('Results', 'Responsiveness')
            # newer responsiveness isn't bound to 0..100; output is clamped instead
            return clamp(lerp(0.32, 0.07, responsiveness / 1200), 0.04, 0.8)
        responsiveness = self._float('Results', 'Responsiveness')
        return normal_lerp(0.32, 0.07, clamp(responsiveness / 100, 0.0, 1.0), 0.2)

    def idle_speed(self) -> float:
        result_idle = self._float('Results', 'IdleRPM')
        curve_min = self._curve('RPM').get(1, result_idle)
        return max(result_idle, curve_min)

    def limiter(self) -> float:
        return self._float('Results', 'MaxRPM')

    def _peak_kw(self) -> float:
        return self._float('Results', 'PeakPower')

    def basic_fuel_consumption(self) -> float:
        econ_eff = self._float('Results', 'EconEff') / 100
        # g/kWh
        bsfc = (3600 / (econ_eff * GASOLINE_LHV)) * 1000
        fuel_use_per_hour = (self._peak_kw() * bsfc) / FUEL_DENSITY
        fuel_use_per_sec = fuel_use_per_hour / 3600
        return (fuel_use_per_sec * 1000) / self._float('Results', 'PeakPowerRPM')

    def fuel_flow_consumption(self, mechanical_efficiency: float) -> FuelConsumptionFlowRate:
        rpm_values = list(self._curve('RPM').values())
        idle_cutoff = round_half_away(self.idle_speed() + 100)
        try:
            fuel_values = list(self.eng_data.lookup_curve('FuelUsage').values())
        except CrateEngineError as exc:
            logger.warning("Failed to load fuel usage curve data: %s", exc)
            logger.info("Using fallback fuel flow calculation")
            return FuelConsumptionFlowRate.new(0.03, idle_cutoff, mechanical_efficiency, None, 50)

        # the fuel curve starts later than the rpm curve; both end at max rpm so pair them from the end
        lut: List[Tuple[int, int]] = []
        max_fuel_flow: Optional[int] = None
        for rpm, kg_per_sec in zip(reversed(rpm_values), reversed(fuel_values)):
            kg_per_hour = round_half_away(kg_per_sec * 3600)
            if max_fuel_flow is None or kg_per_hour > max_fuel_flow:
                max_fuel_flow = kg_per_hour
            lut.append((int(rpm), kg_per_hour))
        lut.reverse()
        return FuelConsumptionFlowRate.new(0.03, idle_cutoff, mechanical_efficiency, lut, max_fuel_flow or 0)

    def engine_torque_curve(self) -> List[Tuple[int, int]]:
        torque = self._curve('Torque')
        return [(round_half_away(rpm), round_half_away(torque[idx])) for idx, rpm in self._curve('RPM').items()]

    def peak_torque(self) -> int:
        return round_half_away(self._float('Results', 'PeakTorque'))

    def engine_bhp_power_curve(self) -> List[Tuple[int, int]]:
        torque = self._curve('Torque')
        return [(int(rpm), round_half_away(kw_to_bhp(calculate_power_kw(rpm, torque[idx]))))
                for idx, rpm in self._curve('RPM').items()]

    def peak_bhp(self) -> int:
        return round_half_away(kw_to_bhp(self._peak_kw()))

    def is_naturally_aspirated(self) -> bool:
        return self._string('Parts', 'Aspiration').startswith('Aspiration_Natural')

    def _aspiration_type_startswith(self, prefix: str) -> bool:
        try:
            return self.eng_data.lookup_string('Parts', 'AspirationType').startswith(prefix)
        except CrateEngineError:
            return False

    def is_supercharged(self) -> bool:
        return self._aspiration_type_startswith('Aspiration_Supercharger')

    def is_twincharged(self) -> bool:
        return self._aspiration_type_startswith('Aspiration_Twin_Charged')

    def naturally_aspirated_wheel_torque_curve(self, drivetrain_efficiency: float) -> List[Tuple[int, float]]:
        rpm_map = self._curve('RPM')
        torque = self._curve('Torque')
        out: List[Tuple[int, float]] = []
        if self.is_naturally_aspirated():
            logger.info("Writing torque curve for NA engine")
            for idx, rpm in rpm_map.items():
                out.append((int(rpm), float(round_half_away(torque[idx] * drivetrain_efficiency))))
        else:
            logger.info("Writing torque curve for Turbo engine")
            boost = self._curve('Boost')
            for idx, rpm in rpm_map.items():
                boost_pressure = max(0.0, boost[idx])
                adjusted = round_half_away((torque[idx] / (1 + boost_pressure)) * drivetrain_efficiency)
                out.append((int(rpm), float(adjusted)))
        return _taper(out)

    def _fold_boost(self, decimal_place_precision: int, boost_target: float) -> Tuple[int, float]:
        rpm_map = self._curve('RPM')
        boost_map = self._curve('Boost')
        if 1 not in boost_map:
            raise _missing("Boost index 1", "curve_data")
        ref_idx, max_boost = 1, normalise_boost_value(boost_map[1], decimal_place_precision)
        for idx, value in boost_map.items():
            if normalise_boost_value(value, 2) > max_boost:
                # over-boost past the charger target and tiny steps don't move the reference rpm
                if value <= boost_target and \
                        normalise_boost_value(value, 1) > normalise_boost_value(max_boost, 1):
                    ref_idx = idx
                max_boost = value
        return round_half_away(rpm_map[ref_idx]), round_float_to(max_boost, decimal_place_precision)

    def get_max_boost_al_rima(self, decimal_place_precision: int) -> Tuple[int, float]:
        try:
            num_chargers = 1 if self.eng_data.lookup_string('Parts', 'AspirationItem2').startswith('NoOption_Name') \
                else 2
        except CrateEngineError:
            logger.warning("Failed to determine number of forced induction chargers; assuming 1")
            num_chargers = 1
        try:
            target = self.eng_data.lookup_float('Tune', 'ChargerMaxBoost1')
            if num_chargers > 1:
                try:
                    target += self.eng_data.lookup_float('Tune', 'ChargerMaxBoost2')
                except CrateEngineError:
                    logger.warning("Failed to determine max boost of forced induction charger 2; "
                                   "only charger 1 will be considered for boost target")
        except CrateEngineError:
            logger.warning("Failed to determine max boost of forced induction charger 1; "
                           "falling back to only consider boost curve data")
            target = math.inf
        return self._fold_boost(decimal_place_precision, target)

    def get_max_boost_legacy(self, decimal_place_precision: int) -> Tuple[int, float]:
        return self._fold_boost(decimal_place_precision, math.inf)

    def get_max_boost_params(self, decimal_place_precision: int) -> Tuple[int, float]:
        if self.is_naturally_aspirated():
            return 0, 0.0
        if self.game_version() >= FIRST_AL_RIMA_VERSION_NUM:
            logger.info("Using Al-Rima max boost calculations")
            return self.get_max_boost_al_rima(decimal_place_precision)
        logger.info("Using legacy max boost calculations")
        return self.get_max_boost_legacy(decimal_place_precision)

    def create_turbo(self) -> Optional[Turbo]:
        if self.is_naturally_aspirated():
            return None
        ref_rpm, max_boost = self.get_max_boost_params(3)
        if self.is_supercharged() or self.is_twincharged():
            # boost follows the controller almost immediately
            return self._turbo(max_boost, round_half_away(self.idle_speed() + 100), 1.0)
        return self._turbo(max_boost, ref_rpm, 2.5)

    def create_turbo_controller(self) -> Optional[TurboController]:
        if self.is_naturally_aspirated():
            return None
        boost = self._curve('Boost')
        lut = []
        for idx, rpm in self._curve('RPM').items():
            value = boost.get(idx, 0.0)
            lut.append((rpm, round_float_to(value, 3) if value > 0 else 0.0))
        return self._controller(lut)

    def displacement(self) -> float:
        return self._float('Tune', 'Displacement')

    def _approx_engine_brake_force(self) -> float:
        # T = MEP * V / (2 * pi * N_c) with MEP of 1 bar and a 4-stroke N_c of 2
        return (100000 * (self.displacement() / 1000)) / (2 * math.pi * 2)

    def coast_data(self) -> CoastCurve:
        friction = self._curve('Friction')
        if not friction:
            raise _missing('Friction', 'curve_data')
        max_friction = friction[max(friction)]
        torque = max_friction + self._approx_engine_brake_force()
        return CoastCurve.new_from_coast_ref(int(self.limiter()), round_half_away(torque), 0.0)

    def damage(self) -> Damage:
        _, max_boost = self.get_max_boost_params(2)
        return Damage(
            rpm_threshold=round_half_away(self.limiter() + 200),
            rpm_damage_k=1,
            turbo_boost_threshold=float(math.ceil(max_boost)),
            turbo_damage_k=0 if self.is_naturally_aspirated() else 4,
        )
