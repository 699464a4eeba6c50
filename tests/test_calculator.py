from __future__ import annotations

import pytest

from conftest import MAIN_ENGINE_JBEAM, direct_export_data
from engine_crane.beamng import loads_jbeam
from engine_crane.calculator import (BeamNGModCalculator, DirectExportCalculator, EngineParameterCalculator,
                                     calculate_power_kw, normalise_boost_value)
from engine_crane.crate_engine.container import CrateEngine
from engine_crane.errors import FabricationError

TURBO_BOOST = [0.0, 0.2, 0.6, 0.9, 1.0, 1.0, 0.95]


@pytest.fixture
def beamng_calculator(make_engine, make_car_file):
    def build(car_overrides=None, **engine_overrides):
        engine = make_engine(**engine_overrides)
        car_file = make_car_file(engine, overrides=car_overrides)
        return BeamNGModCalculator(car_file, loads_jbeam(MAIN_ENGINE_JBEAM.encode()), engine)
    return build


def test_helpers():
    assert normalise_boost_value(-0.3, 2) == 0.0
    assert normalise_boost_value(1.2345, 2) == 1.23
    assert calculate_power_kw(6000, 100) == pytest.approx(62.83, abs=0.01)


def test_beamng_basic_values(beamng_calculator):
    calc = beamng_calculator()
    assert calc.engine_weight() == 180
    assert calc.inertia() == 0.15
    assert calc.idle_speed() == 1000
    assert calc.limiter() == 7000
    assert calc.peak_torque() == 500
    assert calc.peak_bhp() == 429
    assert calc.basic_fuel_consumption() == pytest.approx(0.0045584, abs=1e-6)
    assert calc.engine_torque_curve()[:2] == [(1000, 300), (2000, 400)]
    assert calc.engine_bhp_power_curve()[0] == (1000, 42)


def test_beamng_numeric_inertia(make_engine, make_car_file):
    jbeam = loads_jbeam(MAIN_ENGINE_JBEAM.encode())
    jbeam['Camso_Engine_ABCDE']['mainEngine']['inertia'] = 0.2
    engine = make_engine()
    assert BeamNGModCalculator(make_car_file(engine), jbeam, engine).inertia() == 0.2

    jbeam['Camso_Engine_ABCDE']['mainEngine']['inertia'] = '$=abc'
    with pytest.raises(FabricationError, match='inertia'):
        BeamNGModCalculator(make_car_file(engine), jbeam, engine).inertia()


def test_beamng_na_wheel_torque_curve(beamng_calculator):
    curve = beamng_calculator().naturally_aspirated_wheel_torque_curve(0.85)
    assert len(curve) == 9
    assert curve[0] == (1000, 255.0)
    assert curve[-3] == (7000, 357.0)
    assert curve[-2] == (8000, 178.5)
    assert curve[-1] == (9000, 0.0)


def test_beamng_na_has_no_turbo(beamng_calculator):
    calc = beamng_calculator()
    assert calc.get_max_boost_params(3) == (0, 0.0)
    assert calc.create_turbo() is None
    assert calc.create_turbo_controller() is None
    damage = calc.damage()
    assert damage.rpm_threshold == 7200
    assert damage.turbo_boost_threshold == 0.0
    assert damage.turbo_damage_k == 0


def test_beamng_turbo(beamng_calculator):
    calc = beamng_calculator(aspiration='Aspiration_Turbo_Name', boost_curve=list(TURBO_BOOST))
    assert calc.get_max_boost_params(3) == (5000, 1.0)

    curve = calc.naturally_aspirated_wheel_torque_curve(1.0)
    assert [torque for _, torque in curve[:5]] == [300.0, 333.0, 300.0, 263.0, 245.0]

    section = calc.create_turbo().sections[0]
    assert section.max_boost == 1.0
    assert section.display_max_boost == 1.0
    assert section.reference_rpm == 5000
    assert section.gamma == 2.5

    controller = calc.create_turbo_controller()
    assert controller.lut.to_vec()[:3] == [(1000.0, 0.0), (2000.0, 0.2), (3000.0, 0.6)]
    assert controller.filter == 0.95

    damage = calc.damage()
    assert damage.turbo_boost_threshold == 1.0
    assert damage.turbo_damage_k == 4


def test_beamng_fuel_flow(beamng_calculator):
    flow = beamng_calculator().fuel_flow_consumption(0.85)
    assert flow.base_data.idle_cutoff == 1100
    assert flow.base_data.mechanical_efficiency == 0.85
    assert flow.max_fuel_flow == 87
    entries = flow.lut_entries()
    assert len(entries) == 7
    assert entries[0] == (1000, 9)


@pytest.mark.parametrize('game_version, torque', [
    (2100000000, 39),
    (2250000000, 39),
    (2400000000, 51),
])
def test_beamng_coast_versions(beamng_calculator, game_version, torque):
    coast = beamng_calculator(car_overrides={'GameVersion': game_version}).coast_data()
    assert coast.reference_rpm == 7000
    assert coast.torque == torque


def test_beamng_coast_missing_game_version(beamng_calculator):
    with pytest.raises(FabricationError, match='GameVersion'):
        beamng_calculator(car_overrides={'GameVersion': None}).coast_data()


def test_direct_export_basic_values():
    calc = DirectExportCalculator(direct_export_data())
    assert calc.game_version() == 2400000000
    assert calc.engine_weight() == 150
    assert calc.inertia() == pytest.approx(0.195)
    assert calc.idle_speed() == 1000
    assert calc.limiter() == 8500
    assert calc.peak_torque() == 340
    assert calc.peak_bhp() == 335
    assert calc.basic_fuel_consumption() == pytest.approx(0.0034136, abs=1e-6)
    assert calc.engine_torque_curve()[-1] == (8000, 300)
    assert calc.engine_bhp_power_curve()[0] == (1000, 28)


def test_direct_export_newer_responsiveness():
    data = direct_export_data()
    data.add_float('Info', 'GameVersion', 2600000000)
    assert DirectExportCalculator(data).inertia() == pytest.approx(0.32 - 0.25 * 50 / 1200)
    data.add_float('Results', 'ExportResponsiveness', 600)
    assert DirectExportCalculator(data).inertia() == pytest.approx(0.195)
    data.add_float('Results', 'ExportResponsiveness', 10000)
    assert DirectExportCalculator(data).inertia() == 0.04


def test_direct_export_na():
    calc = DirectExportCalculator(direct_export_data())
    curve = calc.naturally_aspirated_wheel_torque_curve(0.85)
    assert len(curve) == 10
    assert curve[0] == (1000, 170.0)
    assert curve[-2] == (9000, 127.5)
    assert curve[-1] == (10000, 0.0)
    assert calc.create_turbo() is None
    coast = calc.coast_data()
    assert (coast.reference_rpm, coast.torque) == (8500, 46)
    damage = calc.damage()
    assert (damage.rpm_threshold, damage.turbo_boost_threshold, damage.turbo_damage_k) == (8700, 0.0, 0)


def test_direct_export_fuel_flow_fallback():
    flow = DirectExportCalculator(direct_export_data()).fuel_flow_consumption(0.85)
    assert flow.max_fuel_flow == 50
    assert flow.max_fuel_flow_lut is None
    assert flow.base_data.idle_cutoff == 1100


def test_direct_export_fuel_flow_curve():
    data = direct_export_data()
    # starts two samples after the rpm curve
    for idx, kg_per_sec in enumerate([0.002, 0.003, 0.004, 0.005, 0.0045, 0.004], start=1):
        data.add_curve_data('FuelUsage', idx, kg_per_sec)
    flow = DirectExportCalculator(data).fuel_flow_consumption(0.85)
    assert flow.lut_entries() == [(3000, 7), (4000, 11), (5000, 14), (6000, 18), (7000, 16), (8000, 14)]
    assert flow.max_fuel_flow == 18


def test_direct_export_turbo_legacy():
    calc = DirectExportCalculator(direct_export_data(turbo=True))
    assert calc.get_max_boost_params(3) == (5000, 1.0)
    section = calc.create_turbo().sections[0]
    assert (section.reference_rpm, section.gamma) == (5000, 2.5)
    assert calc.create_turbo_controller().lut.to_vec()[1] == (2000.0, 0.2)
    assert calc.naturally_aspirated_wheel_torque_curve(1.0)[1] == (2000, 217.0)
    assert calc.damage().turbo_damage_k == 4


def test_direct_export_turbo_al_rima_respects_charger_target():
    data = direct_export_data(turbo=True)
    data.add_float('Info', 'GameVersion', 2500000000)
    data.add_float('Tune', 'ChargerMaxBoost1', 0.9)
    assert DirectExportCalculator(data).get_max_boost_params(3) == (4000, 1.0)

    data.add_string('Parts', 'AspirationItem2', 'Turbo_Name')
    data.add_float('Tune', 'ChargerMaxBoost2', 0.5)
    assert DirectExportCalculator(data).get_max_boost_params(3) == (5000, 1.0)


def test_direct_export_supercharger_reference_rpm():
    data = direct_export_data(turbo=True)
    data.add_string('Parts', 'AspirationType', 'Aspiration_Supercharger_Roots')
    calc = DirectExportCalculator(data)
    assert calc.is_supercharged()
    assert not calc.is_twincharged()
    section = calc.create_turbo().sections[0]
    assert (section.reference_rpm, section.gamma) == (1100, 1.0)


def test_direct_export_missing_data():
    data = direct_export_data()
    data.float_data['Results'].pop('MaxRPM')
    with pytest.raises(FabricationError, match='MaxRPM'):
        DirectExportCalculator(data).limiter()
    data.float_data['Info'].pop('GameVersion')
    assert DirectExportCalculator(data).game_version() == 0.0


def test_from_crate_engine_direct_export(tmp_path):
    path = CrateEngine.from_exporter_data(direct_export_data()).write_to_dir(tmp_path)
    calc = EngineParameterCalculator.from_crate_engine(path)
    assert isinstance(calc, DirectExportCalculator)
    assert calc.limiter() == 8500


def test_from_crate_engine_beamng(tmp_path, make_engine, make_beamng_mod, make_sandbox_db):
    engine = make_engine()
    crate = CrateEngine.from_beamng_mod_zip(make_beamng_mod(engine), db_path=make_sandbox_db(engine))
    calc = EngineParameterCalculator.from_crate_engine(crate.write_to_dir(tmp_path / 'crate'))
    assert isinstance(calc, BeamNGModCalculator)
    assert calc.engine_weight() == 180
    assert calc.coast_data().torque == 51


def test_from_crate_engine_missing_file(tmp_path):
    with pytest.raises(FabricationError, match='Failed to load'):
        EngineParameterCalculator.from_crate_engine(tmp_path / 'missing.eng')


def test_from_beam_ng_mod(make_engine, make_beamng_mod, make_sandbox_db):
    engine = make_engine()
    calc = EngineParameterCalculator.from_beam_ng_mod(make_beamng_mod(engine), make_sandbox_db(engine))
    assert isinstance(calc, BeamNGModCalculator)
    assert calc.limiter() == 7000


def test_from_beam_ng_mod_validation_failure(make_engine, make_car_file, make_beamng_mod, make_sandbox_db):
    engine = make_engine()
    car_file = make_car_file(engine, overrides={'Name': 'Renamed Variant'})
    with pytest.raises(FabricationError, match='Validation failed'):
        EngineParameterCalculator.from_beam_ng_mod(make_beamng_mod(engine, car_file), make_sandbox_db(engine))


def test_from_beam_ng_mod_unknown_engine(make_engine, make_beamng_mod, make_sandbox_db):
    engine = make_engine()
    other = make_engine(uuid='0' * 32)
    with pytest.raises(FabricationError, match='sandbox db'):
        EngineParameterCalculator.from_beam_ng_mod(make_beamng_mod(engine), make_sandbox_db(other))
