"""
Put a crate engine into an Assetto Corsa car.

``update_ac_engine_parameters`` rewrites the engine of an existing
(normally freshly cloned) car from an ``EngineParameterCalculator``.
Loading the car, ``car.ini`` and the engine sections are hard failures;
drivetrain, ai, shift light and UI updates only log when they go wrong so
that a car with an odd optional file still gets its new engine.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .calculator import EngineParameterCalculator
from .car import Car
from .errors import CarError, FabricationError, UiJsonError
from .numeric import format_number, round_float_to, round_half_away, round_up_to_nearest_multiple
from .sections.ai import AiGears, AiIni
from .sections.base import extract_mandatory_section, extract_optional_section
from .sections.car_ini import CarIniData, CarVersion
from .sections.drivetrain import AutoShifter, Clutch, DrivetrainIni, Traction
from .sections.engine import (EngineData, EngineIni, PowerCurve, Turbo, TurboControllerFile,
                              delete_all_turbo_controllers)
from .sections.shift_lights import DigitalInstrumentsIni, ShiftLights
from .ui_json import UiInfo
from .upgrade_icon import CarUpgradeIcon, render_upgrade_icon

logger = logging.getLogger(__name__)

BLANK_SPEC = '---'
DEFAULT_IDLE_RPM = 500


class AssettoCorsaPhysicsLevel(str, enum.Enum):
    BASE_GAME = 'BaseGame'
    CSP_EXTENDED_PHYSICS = 'CspExtendedPhysics'

    def __str__(self) -> str:
        if self is AssettoCorsaPhysicsLevel.BASE_GAME:
            return "Base game physics"
        return "CSP extended physics"


@dataclass
class AssettoCorsaCarSettings:
    minimum_physics_level: AssettoCorsaPhysicsLevel = AssettoCorsaPhysicsLevel.BASE_GAME
    auto_adjust_clutch: bool = True
    add_upgrade_icon: bool = True


@dataclass
class AdditionalAcCarData:
    # weight of the engine being replaced, used to adjust TOTALMASS
    engine_weight: Optional[int] = None


def _update_car_ini(car: Car, calculator: EngineParameterCalculator, settings: AssettoCorsaCarSettings,
                    additional: AdditionalAcCarData) -> Optional[int]:
    """Returns the car's total mass after the update."""
    try:
        ini_data = CarIniData.from_data_interface(car.data_interface)
    except CarError as exc:
        raise FabricationError("Failed to load car.ini", str(exc)) from exc
    if settings.minimum_physics_level is AssettoCorsaPhysicsLevel.BASE_GAME:
        logger.info("Using base game physics")
        ini_data.set_fuel_consumption(calculator.basic_fuel_consumption())
    else:
        logger.info("Using CSP extended physics")
        ini_data.set_version(CarVersion.CSP_EXTENDED_PHYSICS)
        ini_data.clear_fuel_consumption()

    if additional.engine_weight is not None:
        current_mass = ini_data.total_mass()
        if current_mass is None:
            logger.error("Existing car doesn't have a total mass property")
        else:
            delta = calculator.engine_weight() - additional.engine_weight
            if delta < 0 and abs(delta) >= current_mass:
                logger.error("Invalid existing engine weight (%s). Would result in negative total mass",
                             additional.engine_weight)
            else:
                new_mass = current_mass + delta
                logger.info("Updating total mass to %s based off a provided existing engine weight of %s",
                            new_mass, additional.engine_weight)
                ini_data.set_total_mass(new_mass)
    logger.info("Writing car ini files")
    mass = ini_data.total_mass()
    try:
        ini_data.write()
    except CarError as exc:
        raise FabricationError("Failed to write car.ini", str(exc)) from exc
    return mass


def _update_engine_ini(car: Car, calculator: EngineParameterCalculator, settings: AssettoCorsaCarSettings,
                       mechanical_efficiency: float, new_limiter: int) -> int:
    """Returns the limiter the engine had before the update."""
    try:
        engine = EngineIni.from_data_interface(car.data_interface)
        if settings.minimum_physics_level is AssettoCorsaPhysicsLevel.CSP_EXTENDED_PHYSICS:
            calculator.fuel_flow_consumption(mechanical_efficiency).update_car_data(engine)

        engine_data = extract_mandatory_section(EngineData, engine)
        try:
            engine_data.inertia = calculator.inertia()
        except FabricationError as exc:
            logger.warning("Failed to calculate new inertia value. %s. existing value will be used", exc)
        old_limiter = engine_data.limiter
        engine_data.limiter = new_limiter
        try:
            engine_data.minimum = round_half_away(calculator.idle_speed())
        except FabricationError as exc:
            logger.warning("Failed to calculate idle rpm. %s. Using %s as value", exc, DEFAULT_IDLE_RPM)
            engine_data.minimum = DEFAULT_IDLE_RPM
        engine_data.update_car_data(engine)
        calculator.damage().update_car_data(engine)
        calculator.coast_data().update_car_data(engine)

        power_curve = extract_mandatory_section(PowerCurve, engine)
        power_curve.update(calculator.naturally_aspirated_wheel_torque_curve(mechanical_efficiency))
        power_curve.update_car_data(engine)

        new_turbo = calculator.create_turbo()
        if new_turbo is None:
            logger.info("The new engine doesn't have a turbo")
            old_turbo = extract_optional_section(Turbo, engine)
            if old_turbo is not None:
                logger.info("Removing old engine turbo parameters")
                old_turbo.clear_sections()
                old_turbo.clear_bov_threshold()
                old_turbo.update_car_data(engine)
        else:
            logger.info("The new engine has a turbo")
            new_turbo.update_car_data(engine)

        logger.info("Writing engine ini files")
        engine.write()
    except CarError as exc:
        raise FabricationError("Failed to update engine.ini", str(exc)) from exc
    return old_limiter


def _update_drivetrain(car: Car, calculator: EngineParameterCalculator, settings: AssettoCorsaCarSettings,
                       new_limiter: int) -> None:
    logger.info("Updating drivetrain ini files")
    try:
        drivetrain = DrivetrainIni.from_data_interface(car.data_interface)
    except CarError as exc:
        logger.error("Failed to load drivetrain. %s", exc)
        return
    try:
        autoshifter = extract_mandatory_section(AutoShifter, drivetrain)
        autoshifter.set_shift_points_for_limiter(new_limiter)
        autoshifter.update_car_data(drivetrain)
    except CarError as exc:
        logger.error("Failed to update drivetrain autoshifter. %s", exc)

    if settings.auto_adjust_clutch:
        try:
            clutch = extract_mandatory_section(Clutch, drivetrain)
            peak_torque = calculator.peak_torque()
            if peak_torque > clutch.max_torque:
                clutch.max_torque = round_up_to_nearest_multiple(peak_torque + 30, 50)
                logger.info("Raising clutch max torque to %s", clutch.max_torque)
            clutch.update_car_data(drivetrain)
        except CarError as exc:
            logger.error("Failed to update clutch MAX_TORQUE. %s", exc)

    logger.info("Writing drivetrain ini files")
    try:
        drivetrain.write()
    except CarError as exc:
        logger.error("Failed to write drivetrain.ini. %s", exc)


def _update_ai(car: Car, new_limiter: int) -> None:
    logger.info("Updating ai ini files")
    try:
        ai = AiIni.from_data_interface(car.data_interface)
    except CarError as exc:
        logger.error("Failed to load ai data. %s", exc)
        return
    if ai is None:
        logger.error("Failed to load ai data")
        return
    gears = extract_optional_section(AiGears, ai)
    if gears is None:
        return
    gears.set_shift_points_for_limiter(new_limiter)
    gears.update_car_data(ai)
    try:
        ai.write()
    except CarError as exc:
        logger.error("Failed to write %s. %s", ai.filename, exc)


def _update_shift_lights(car: Car, old_limiter: int, new_limiter: int) -> None:
    try:
        instruments = DigitalInstrumentsIni.from_data_interface(car.data_interface)
    except CarError as exc:
        logger.warning("Failed to update digital_instruments.ini. %s", exc)
        return
    if instruments is None:
        return
    logger.info("Updating digital instruments files")
    try:
        shift_lights = ShiftLights.load_from_parent(instruments)
    except CarError as exc:
        logger.warning("Failed to load shift lights in %s. %s", instruments.filename, exc)
        return
    if shift_lights is None:
        return
    shift_lights.update_limiter(old_limiter, new_limiter)
    shift_lights.update_car_data(instruments)
    try:
        instruments.write()
    except CarError as exc:
        logger.warning("Failed to write %s. %s", instruments.filename, exc)


def _update_ui(car: Car, calculator: EngineParameterCalculator, mass: Optional[int]) -> None:
    logger.info("Updating ui components")
    try:
        ui_info = UiInfo.load_from_car(car.root_path)
    except UiJsonError as exc:
        logger.error("Failed to load ui files. %s", exc)
        return
    try:
        ui_info.update_power_curve(calculator.engine_bhp_power_curve())
        ui_info.update_torque_curve(calculator.engine_torque_curve())
        peak_bhp = calculator.peak_bhp()
        ui_info.update_spec('bhp', f"{peak_bhp}bhp")
        ui_info.update_spec('torque', f"{calculator.peak_torque()}Nm")
        if mass is not None and peak_bhp:
            ui_info.update_spec('weight', f"{mass}kg")
            ui_info.update_spec('pwratio', f"{format_number(round_float_to(mass / peak_bhp, 2))}kg/hp")
        else:
            ui_info.update_spec('weight', BLANK_SPEC)
            ui_info.update_spec('pwratio', BLANK_SPEC)
        for key in ('acceleration', 'range', 'topspeed'):
            ui_info.update_spec(key, BLANK_SPEC)
    except UiJsonError as exc:
        logger.error("Failed to update ui data. %s", exc)
    logger.info("Writing car ui files")
    try:
        ui_info.write()
    except UiJsonError as exc:
        logger.error("Failed to write ui files. %s", exc)


def update_ac_engine_parameters(car_path: Path, calculator: EngineParameterCalculator,
                                settings: Optional[AssettoCorsaCarSettings] = None,
                                additional: Optional[AdditionalAcCarData] = None) -> None:
    settings = settings or AssettoCorsaCarSettings()
    additional = additional or AdditionalAcCarData()
    car_path = Path(car_path)

    logger.info("Loading car %s", car_path)
    try:
        car = Car.load_from_path(car_path)
        drivetrain = DrivetrainIni.from_data_interface(car.data_interface)
        drive_type = extract_mandatory_section(Traction, drivetrain).drive_type
    except CarError as exc:
        raise FabricationError(f"Failed to load {car_path}", str(exc)) from exc
    mechanical_efficiency = drive_type.mechanical_efficiency
    logger.info("Existing car is %s with assumed mechanical efficiency of %s", drive_type.value,
                mechanical_efficiency)

    new_limiter = round_half_away(calculator.limiter())
    mass = _update_car_ini(car, calculator, settings, additional)

    logger.info("Clearing existing turbo controllers")
    try:
        delete_all_turbo_controllers(car.data_interface)
    except CarError as exc:
        logger.warning("Failed to clear turbo controllers. %s", exc)

    old_limiter = _update_engine_ini(car, calculator, settings, mechanical_efficiency, new_limiter)

    controller = calculator.create_turbo_controller()
    if controller is not None:
        logger.info("Writing turbo controller with index 0")
        controller_file = TurboControllerFile(car.data_interface, 0)
        try:
            controller.update_car_data(controller_file)
            controller_file.write()
        except CarError as exc:
            raise FabricationError(f"Failed to write {controller_file.filename}", str(exc)) from exc

    _update_drivetrain(car, calculator, settings, new_limiter)
    _update_ai(car, new_limiter)
    _update_shift_lights(car, old_limiter, new_limiter)
    _update_ui(car, calculator, mass)

    if settings.add_upgrade_icon:
        icon = CarUpgradeIcon(car.root_path)
        if not icon.is_present():
            try:
                icon.update(render_upgrade_icon())
            except OSError as exc:
                logger.warning("Failed to write upgrade icon. %s", exc)


def swap_crate_engine_into_ac_car(crate_engine_path: Path, car_path: Path,
                                  settings: Optional[AssettoCorsaCarSettings] = None,
                                  additional: Optional[AdditionalAcCarData] = None) -> None:
    calculator = EngineParameterCalculator.from_crate_engine(crate_engine_path)
    update_ac_engine_parameters(car_path, calculator, settings, additional)


def swap_beamng_mod_into_ac_car(mod_path: Path, car_path: Path,
                                settings: Optional[AssettoCorsaCarSettings] = None,
                                additional: Optional[AdditionalAcCarData] = None,
                                db_path: Optional[Path] = None) -> None:
    calculator = EngineParameterCalculator.from_beam_ng_mod(mod_path, db_path)
    update_ac_engine_parameters(car_path, calculator, settings, additional)
