"""
Fuel consumption editing for CSP extended physics.

Consumption can be entered either as thermal efficiency (percent) at a
set of rpms, which is turned into a fuel flow using the power the engine
makes there, or directly as a fuel flow in g/min. Both end up as a
``FUEL_CONSUMPTION`` section with a ``MAX_FUEL_FLOW_LUT`` in kg/h.

Only rpms with a value entered make it into the LUT; CSP interpolates
between them.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..car import Car
from ..errors import ArgumentError, CarError, InvalidUpdate
from ..lut_parser import LutInterpolator
from ..numeric import round_half_away
from ..sections.base import extract_mandatory_section, extract_optional_section
from ..sections.car_ini import CarIniData, CarVersion
from ..sections.drivetrain import DrivetrainIni, Traction
from ..sections.engine import (EngineData, EngineIni, FuelConsumptionFlowRate, PowerCurve, Turbo,
                               TurboController, TurboControllerFile)

logger = logging.getLogger(__name__)

# kWh/g
GASOLINE_LHV = 0.01204
IDLE_THROTTLE = 0.03
RPM_STEP = 500
MAX_FLOW_RPM_FRACTION = 0.7


def fuel_use_per_sec_at_rpm(eff_percentage: float, power_kw: float, fuel_lhv: float = GASOLINE_LHV) -> float:
    """Fuel mass flow in g/s for an engine making ``power_kw`` at the given thermal efficiency."""
    bsfc = 1.0 / ((eff_percentage / 100.0) * fuel_lhv)
    return (bsfc / 3600000.0) * (power_kw * 1000.0)


def fuel_use_kg_per_hour(eff_percentage: float, power_kw: float, fuel_lhv: float = GASOLINE_LHV) -> int:
    return round_half_away(fuel_use_per_sec_at_rpm(eff_percentage, power_kw, fuel_lhv) * 3.6)


def g_min_to_kg_hour(grams_per_minute: float) -> float:
    return grams_per_minute * 60.0 / 1000.0


def max_flow_rpm(idle: int, limiter: int) -> int:
    """MAX_FUEL_FLOW is taken high in the rev range, where racing happens."""
    return idle + round_half_away(MAX_FLOW_RPM_FRACTION * (limiter - idle))


def default_rpm_samples(idle: int, limiter: int, step: int = RPM_STEP) -> List[int]:
    """Every ``step`` rpm down from the limiter, plus idle."""
    samples = {rpm for rpm in range(limiter, idle - 1, -step) if rpm >= 0}
    if idle >= 0:
        samples.add(idle)
    return sorted(samples)


def create_engine_power_interpolator(power_curve: Sequence[Tuple[float, float]], mechanical_efficiency: float,
                                     boost: Optional[LutInterpolator] = None) -> LutInterpolator:
    """
    Engine power in kW by rpm from the wheel torque curve in ``power.lut``.

    Torque is scaled back up by the drivetrain losses and, for turbo cars,
    by the boost the controller adds at that rpm.
    """
    power = []
    for rpm, torque in power_curve:
        engine_torque = torque / mechanical_efficiency
        if boost is not None:
            rpm_boost = boost.get_value(rpm)
            if rpm_boost is not None:
                engine_torque *= 1.0 + rpm_boost
        power.append((rpm, engine_torque * rpm * 2.0 * math.pi / 60000.0))
    return LutInterpolator(power)


def _load_boost_interpolator(car: Car, engine: EngineIni) -> Optional[LutInterpolator]:
    turbo = extract_optional_section(Turbo, engine)
    if turbo is None:
        return None
    try:
        ctrl_file = TurboControllerFile.from_data_interface(car.data_interface, 0)
        if ctrl_file is None:
            logger.warning("No turbo controller file. No boost corrections applied.")
            return None
        return LutInterpolator.from_lut(TurboController.load_from_parent(0, ctrl_file).lut)
    except CarError as exc:
        logger.warning("Failed to load turbo controller. No boost corrections applied. %s", exc)
        return None


class EngineFuelContext:
    """What both fuel formulations need to know about the car's engine."""

    def __init__(self, mechanical_efficiency: float, idle: int, limiter: int,
                 power_interpolator: LutInterpolator, existing_lut: Optional[Dict[int, int]] = None) -> None:
        self.mechanical_efficiency = mechanical_efficiency
        self.idle = idle
        self.limiter = limiter
        self.power_interpolator = power_interpolator
        self.existing_lut = dict(existing_lut or {})

    @classmethod
    def load(cls, car_path: Path) -> 'EngineFuelContext':
        car = Car.load_from_path(car_path)
        drivetrain = DrivetrainIni.from_data_interface(car.data_interface)
        drive_type = extract_mandatory_section(Traction, drivetrain).drive_type
        mechanical_efficiency = drive_type.mechanical_efficiency
        logger.info("Existing car is %s with assumed mechanical efficiency of %s",
                    drive_type.value, mechanical_efficiency)

        engine = EngineIni.from_data_interface(car.data_interface)
        engine_data = extract_mandatory_section(EngineData, engine)
        power_curve = extract_mandatory_section(PowerCurve, engine)
        boost = _load_boost_interpolator(car, engine)
        try:
            flow_rate = FuelConsumptionFlowRate.load_from_parent(engine)
        except CarError as exc:
            logger.warning("Error trying to read fuel consumption data. %s", exc)
            flow_rate = None
        existing = {} if flow_rate is None else {int(k): int(v) for k, v in flow_rate.lut_entries()}
        return cls(
            mechanical_efficiency=mechanical_efficiency,
            idle=engine_data.minimum,
            limiter=engine_data.limiter,
            power_interpolator=create_engine_power_interpolator(power_curve.to_vec(), mechanical_efficiency,
                                                                boost),
            existing_lut=existing,
        )

    def rpm_samples(self) -> List[int]:
        if self.existing_lut:
            return sorted(self.existing_lut)
        return default_rpm_samples(self.idle, self.limiter)

    def power_at(self, rpm: int) -> Optional[float]:
        return self.power_interpolator.get_value(rpm)

    def fuel_flow_rate(self, lut: List[Tuple[int, int]], max_fuel_flow: int) -> FuelConsumptionFlowRate:
        if not lut:
            raise InvalidUpdate("Not enough data to create fuel consumption data")
        return FuelConsumptionFlowRate.new(IDLE_THROTTLE, self.idle + 100, self.mechanical_efficiency,
                                           lut, max_fuel_flow)


def write_fuel_consumption(car_path: Path, fuel_flow: FuelConsumptionFlowRate) -> None:
    """Write the fuel model to ``engine.ini`` and switch ``car.ini`` to extended physics."""
    car = Car.load_from_path(car_path)
    engine = EngineIni.from_data_interface(car.data_interface)
    fuel_flow.update_car_data(engine)
    logger.info("Writing engine ini files")
    engine.write()

    ini_data = CarIniData.from_data_interface(car.data_interface)
    ini_data.set_version(CarVersion.CSP_EXTENDED_PHYSICS)
    ini_data.clear_fuel_consumption()
    logger.info("Writing car ini files")
    ini_data.write()


class _SampleTable:
    def __init__(self, context: EngineFuelContext, rpms: Optional[Iterable[int]] = None) -> None:
        self.context = context
        self.values: Dict[int, Optional[float]] = {rpm: None for rpm in (rpms or context.rpm_samples())}

    def rpms(self) -> List[int]:
        return sorted(self.values)

    def add_sample(self, rpm: int) -> None:
        if rpm < 0:
            raise ArgumentError(f"Invalid rpm {rpm}")
        self.values.setdefault(rpm, None)

    def _check_rpm(self, rpm: int) -> None:
        if rpm not in self.values:
            raise ArgumentError(f"No fuel consumption sample at {rpm}rpm")

    def known_values(self) -> List[Tuple[int, float]]:
        return [(rpm, value) for rpm, value in sorted(self.values.items()) if value is not None]

    def update_car(self, car_path: Path) -> None:
        write_fuel_consumption(car_path, self.fuel_consumption())

    def fuel_consumption(self) -> FuelConsumptionFlowRate:
        raise NotImplementedError


class FuelEfficiencyConfig(_SampleTable):
    """Thermal efficiency (percent) by rpm."""

    @classmethod
    def from_car(cls, car_path: Path) -> 'FuelEfficiencyConfig':
        return cls(EngineFuelContext.load(car_path))

    def set_efficiency(self, rpm: int, efficiency: Optional[float]) -> None:
        self._check_rpm(rpm)
        if efficiency is not None and not 0 < efficiency <= 100:
            raise ArgumentError(f"Efficiency must be a percentage above 0, got {efficiency}")
        self.values[rpm] = efficiency

    def projected_fuel_flow(self, rpm: int) -> Optional[int]:
        """kg/h at ``rpm`` for the efficiency entered there, if there is one."""
        efficiency = self.values.get(rpm)
        power = self.context.power_at(rpm)
        if efficiency is None or power is None:
            return None
        return fuel_use_kg_per_hour(efficiency, power)

    def fuel_consumption(self) -> FuelConsumptionFlowRate:
        known = self.known_values()
        eff_interpolator = LutInterpolator(known)
        max_rpm = max_flow_rpm(self.context.idle, self.context.limiter)
        max_eff = eff_interpolator.get_value(max_rpm)
        max_power = self.context.power_at(max_rpm)
        if max_eff is None or max_power is None:
            raise InvalidUpdate(f"Failed to get fuel flow at {max_rpm}rpm for MAX_FUEL_FLOW")
        max_fuel_flow = fuel_use_kg_per_hour(round_half_away(max_eff), max_power)

        lut = []
        for rpm, efficiency in known:
            power = self.context.power_at(rpm)
            if power is None:
                logger.warning("Failed to interpolate power val @%srpm. Skipping value in max_flow lut", rpm)
                continue
            lut.append((rpm, fuel_use_kg_per_hour(efficiency, power)))
        return self.context.fuel_flow_rate(lut, max_fuel_flow)


class FuelFlowConfig(_SampleTable):
    """Fuel flow in g/min by rpm."""

    @classmethod
    def from_car(cls, car_path: Path) -> 'FuelFlowConfig':
        return cls(EngineFuelContext.load(car_path))

    def set_flow(self, rpm: int, grams_per_minute: Optional[float]) -> None:
        self._check_rpm(rpm)
        if grams_per_minute is not None and grams_per_minute < 0:
            raise ArgumentError(f"Fuel flow can't be negative, got {grams_per_minute}")
        self.values[rpm] = grams_per_minute

    def fuel_consumption(self) -> FuelConsumptionFlowRate:
        known = self.known_values()
        max_rpm = max_flow_rpm(self.context.idle, self.context.limiter)
        max_flow = LutInterpolator(known).get_value(max_rpm)
        if max_flow is None:
            raise InvalidUpdate(f"Failed to get fuel flow at {max_rpm}rpm for MAX_FUEL_FLOW")
        lut = [(rpm, round_half_away(g_min_to_kg_hour(flow))) for rpm, flow in known]
        return self.context.fuel_flow_rate(lut, round_half_away(g_min_to_kg_hour(max_flow)))
