from __future__ import annotations

import pytest

from engine_crane.data_interface import DataFolderInterface
from engine_crane.errors import InvalidCar, InvalidUpdate, MissingMandatoryProperty
from engine_crane.ini_parser import Ini
from engine_crane.sections.ai import AiGears, AiIni
from engine_crane.sections.base import IniFile, extract_mandatory_section, extract_optional_section
from engine_crane.sections.car_ini import CarIniData, CarVersion
from engine_crane.sections.drivetrain import (AutoShifter, Clutch, DriveType, DrivetrainIni, Gearbox,
                                              Traction)
from engine_crane.sections.engine import (CoastCurve, Damage, EngineData, EngineIni, FuelConsumptionFlowRate,
                                          PowerCurve, Turbo, TurboController, TurboControllerFile,
                                          delete_all_turbo_controllers)
from engine_crane.sections.setup import (GearData, GearSetConfig, PerGearConfig, SetupIni, SingleGear,
                                         load_gear_config)
from engine_crane.sections.shift_lights import (DigitalInstrumentsIni, ShiftLights, rescale_to_limiter,
                                                round_to_nearest_hundred)
from engine_crane.sections.tyres import TyreCompounds, TyresIni, indexed_sections

from conftest import car_data_files


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'data'
    path.mkdir()
    for filename, content in car_data_files(turbo=True).items():
        (path / filename).write_bytes(content)
    return path


@pytest.fixture
def di(data_dir):
    return DataFolderInterface(data_dir)


def _reload(di, filename):
    return IniFile(di, filename, Ini.load_from_bytes(di.get(filename)))


def test_missing_mandatory_file(tmp_path):
    di = DataFolderInterface(tmp_path)
    with pytest.raises(InvalidCar, match='missing car.ini data'):
        CarIniData.from_data_interface(di)
    assert AiIni.from_data_interface(di) is None


def test_car_ini(di):
    car_ini = CarIniData.from_data_interface(di)
    assert car_ini.version() is CarVersion.ONE
    assert car_ini.screen_name() == 'Test Car'
    assert car_ini.total_mass() == 1200
    assert car_ini.fuel_consumption() == pytest.approx(0.003)

    car_ini.set_version(CarVersion.CSP_EXTENDED_PHYSICS)
    car_ini.set_total_mass(1250)
    car_ini.set_fuel_consumption(0.00412345)
    car_ini.write()

    reloaded = CarIniData.from_data_interface(di)
    assert reloaded.version() is CarVersion.CSP_EXTENDED_PHYSICS
    assert reloaded.total_mass() == 1250
    assert reloaded.ini.get_value('FUEL', 'CONSUMPTION') == '0.0041'
    reloaded.clear_fuel_consumption()
    assert reloaded.fuel_consumption() is None


def test_drive_type_efficiency():
    assert DriveType.RWD.mechanical_efficiency == 0.85
    assert DriveType.FWD.mechanical_efficiency == 0.9
    assert DriveType.AWD.mechanical_efficiency == 0.75
    assert DriveType.AWD2.mechanical_efficiency == 0.75


def test_drivetrain_sections(di):
    drivetrain = DrivetrainIni.from_data_interface(di)
    assert extract_mandatory_section(Traction, drivetrain).drive_type is DriveType.RWD
    gearbox = extract_mandatory_section(Gearbox, drivetrain)
    assert gearbox.gear_count == 6
    assert gearbox.gear_ratios[0] == pytest.approx(3.5)
    assert gearbox.final_drive() == pytest.approx(3.9)
    assert gearbox.change_up_time == 150
    assert extract_mandatory_section(Clutch, drivetrain).max_torque == 300
    shifter = extract_mandatory_section(AutoShifter, drivetrain)
    assert (shifter.up, shifter.down) == (6700, 4500)


def test_gearbox_shrinking_removes_orphan_keys(di):
    drivetrain = DrivetrainIni.from_data_interface(di)
    gearbox = Gearbox.load_from_parent(drivetrain)
    gearbox.update_gears([3.2, 2.0, 1.4, 1.1])
    gearbox.update_final_drive(4.1)
    gearbox.update_car_data(drivetrain)
    drivetrain.write()

    ini = _reload(di, 'drivetrain.ini').ini
    assert ini.get_value('GEARS', 'COUNT') == '4'
    assert ini.get_value('GEARS', 'GEAR_1') == '3.200'
    assert not ini.section_contains_property('GEARS', 'GEAR_5')
    assert not ini.section_contains_property('GEARS', 'GEAR_6')
    assert ini.get_value('GEARS', 'FINAL') == '4.100'


def test_gearbox_count_mismatch(di):
    gearbox = Gearbox.load_from_parent(DrivetrainIni.from_data_interface(di))
    gearbox.gear_count = 3
    with pytest.raises(InvalidUpdate):
        gearbox.update_car_data(DrivetrainIni.from_data_interface(di))


def test_shift_points_for_limiter(di):
    shifter = AutoShifter.load_from_parent(DrivetrainIni.from_data_interface(di))
    shifter.set_shift_points_for_limiter(8550)
    assert (shifter.up, shifter.down) == (8245, 5950)


def test_ai_gears(di):
    ai = AiIni.from_data_interface(di)
    gears = extract_optional_section(AiGears, ai)
    assert gears.up == 6700
    assert gears.slip_threshold == pytest.approx(0.95)

    gears.set_shift_points_for_limiter(7000)
    gears.update_car_data(ai)
    assert (ai.ini.get_value('GEARS', 'UP'), ai.ini.get_value('GEARS', 'DOWN')) == ('6790', '4900')


def test_optional_section_degrades_to_none(tmp_path):
    di = DataFolderInterface(tmp_path)
    (tmp_path / 'ai.ini').write_bytes(b'[GEARS]\nUP=6700\n')
    assert extract_optional_section(AiGears, AiIni.from_data_interface(di)) is None


def test_engine_sections(di):
    engine = EngineIni.from_data_interface(di)
    engine_data = EngineData.load_from_parent(engine)
    assert (engine_data.limiter, engine_data.minimum) == (7000, 1000)
    assert engine_data.inertia == pytest.approx(0.12)

    power = PowerCurve.load_from_parent(engine)
    assert power.to_vec()[0] == (1000, 150.0)
    assert len(power.to_vec()) == 7

    coast = CoastCurve.load_from_parent(engine)
    assert (coast.reference_rpm, coast.torque) == (7000, 60)

    damage = Damage.load_from_parent(engine)
    assert damage.rpm_threshold == 7200
    assert damage.turbo_boost_threshold is None

    turbo = Turbo.load_from_parent(engine)
    assert turbo.bov_pressure_threshold == pytest.approx(0.5)
    assert len(turbo.sections) == 1
    assert turbo.sections[0].reference_rpm == 4000


def test_power_curve_written_to_its_lut(di, data_dir):
    engine = EngineIni.from_data_interface(di)
    power = PowerCurve.load_from_parent(engine)
    power.update([(1000, 100.0), (2000, 120.5)])
    power.update_car_data(engine)
    engine.write()
    assert (data_dir / 'power.lut').read_bytes() == b'1000|100\r\n2000|120.5\r\n'


def test_missing_power_lut(di, data_dir):
    (data_dir / 'power.lut').unlink()
    with pytest.raises(InvalidCar):
        PowerCurve.load_from_parent(EngineIni.from_data_interface(di))


def test_damage_without_turbo_values(di):
    engine = EngineIni.from_data_interface(di)
    Damage(7700, 1, 1.0, 4).update_car_data(engine)
    assert engine.ini.get_value('DAMAGE', 'TURBO_BOOST_THRESHOLD') == '1.00'
    Damage(7700, 1).update_car_data(engine)
    assert not engine.ini.section_contains_property('DAMAGE', 'TURBO_DAMAGE_K')


def test_turbo_removal(di):
    engine = EngineIni.from_data_interface(di)
    turbo = Turbo.load_from_parent(engine)
    turbo.clear_sections()
    turbo.clear_bov_threshold()
    turbo.update_car_data(engine)
    assert not engine.ini.contains_section('TURBO_0')
    assert not engine.ini.contains_section('BOV')
    assert Turbo.load_from_parent(engine) is None


def test_turbo_controller(di):
    ctrl_file = TurboControllerFile.from_data_interface(di, 0)
    assert ctrl_file.filename == 'ctrl_turbo0.ini'
    assert ctrl_file.num_controller_sections() == 1
    controller = TurboController.load_from_parent(0, ctrl_file)
    assert controller.lut.to_vec() == [(0.0, 0.0), (3000.0, 0.5), (7000.0, 0.8)]
    assert TurboControllerFile.from_data_interface(di, 1) is None


def test_delete_all_turbo_controllers(di, data_dir):
    (data_dir / 'ctrl_turbo1.ini').write_bytes((data_dir / 'ctrl_turbo0.ini').read_bytes())
    delete_all_turbo_controllers(di)
    di.flush()
    assert not (data_dir / 'ctrl_turbo0.ini').exists()
    assert not (data_dir / 'ctrl_turbo1.ini').exists()


def test_fuel_flow_rate(di):
    engine = EngineIni.from_data_interface(di)
    assert FuelConsumptionFlowRate.load_from_parent(engine) is None
    FuelConsumptionFlowRate.new(0.03, 1100, 0.85, [(1000, 6), (3000, 26)], 39).update_car_data(engine)
    ini = engine.ini
    assert ini.get_value('ENGINE_DATA', 'IDLE_THROTTLE') == '0.030'
    assert ini.get_value('ENGINE_DATA', 'IDLE_CUTOFF') == '1100'
    assert ini.get_value('ENGINE_DATA', 'MECHANICAL_EFFICIENCY') == '0.850'
    assert ini.get_value('FUEL_CONSUMPTION', 'MAX_FUEL_FLOW') == '39'
    assert ini.get_value('FUEL_CONSUMPTION', 'LOG_FUEL_FLOW') == '0'
    assert ini.get_value('FUEL_CONSUMPTION', 'MAX_FUEL_FLOW_LUT') == '(1000=6|3000=26)'

    loaded = FuelConsumptionFlowRate.load_from_parent(engine)
    assert loaded.max_fuel_flow == 39
    assert loaded.lut_entries() == [(1000, 6), (3000, 26)]


def test_shift_light_rounding():
    assert round_to_nearest_hundred(0.5) == 0
    assert round_to_nearest_hundred(7905) == 7900
    assert round_to_nearest_hundred(7950) == 8000
    assert rescale_to_limiter(6500, 7000, 8500) == 7900


def test_shift_lights_follow_limiter(di):
    instruments = DigitalInstrumentsIni.from_data_interface(di)
    lights = ShiftLights.load_from_parent(instruments)
    assert lights.num_leds() == 2
    assert lights.shift_leds[0].emissive == (10.0, 0.0, 0.0)

    lights.update_limiter(7000, 8500)
    assert (lights.shift_leds[0].rpm_switch, lights.shift_leds[0].blink_switch) == (7900, 8500)
    assert (lights.shift_leds[1].rpm_switch, lights.shift_leds[1].blink_switch) == (8500, 8600)

    lights.update_car_data(instruments)
    assert instruments.ini.get_value('LED_0', 'RPM_SWITCH') == '7900'
    assert instruments.ini.get_value('LED_1', 'EMISSIVE') == '10,0,0'


def test_no_shift_lights(tmp_path):
    (tmp_path / 'digital_instruments.ini').write_bytes(b'[ITEM_0]\nPOSITION=1\n')
    instruments = DigitalInstrumentsIni.from_data_interface(DataFolderInterface(tmp_path))
    assert ShiftLights.load_from_parent(instruments) is None


TYRES_INI = """\
[COMPOUND_DEFAULT]
INDEX=1

[FRONT]
NAME=Street
SHORT_NAME=S
WIDTH=0.225
RADIUS=0.315
RIM_RADIUS=0.241

[REAR]
NAME=Street
SHORT_NAME=S
WIDTH=0.255
RADIUS=0.320
RIM_RADIUS=0.241

[THERMAL_FRONT]
SURFACE_TRANSFER=0.0140

[FRONT_1]
NAME=Semislick
SHORT_NAME=SM
WIDTH=0.235
RADIUS=0.315
RIM_RADIUS=0.241

[REAR_1]
NAME=Semislick
SHORT_NAME=SM
WIDTH=0.265
RADIUS=0.320
RIM_RADIUS=0.241

[FRONT_2]
WIDTH=0.235
RADIUS=0.315
RIM_RADIUS=0.241

[REAR_2]
WIDTH=0.265
"""


def test_tyre_compounds(tmp_path):
    (tmp_path / 'tyres.ini').write_text(TYRES_INI)
    tyres = TyresIni.from_data_interface(DataFolderInterface(tmp_path))
    assert indexed_sections(tyres.ini, 'FRONT') == {0: 'FRONT', 1: 'FRONT_1', 2: 'FRONT_2'}

    compounds = TyreCompounds.load_from_parent(tyres)
    assert sorted(compounds.sets) == [0, 1]
    assert compounds.default_set_idx == 1
    default = compounds.get_default_set()
    assert default.front.short_name == 'SM'
    assert default.rear.width == pytest.approx(0.265)


SETUP_INI = """\
[GEARS]
USE_GEARSET=0

[GEAR_1]
RATIOS=first.rto
NAME=First gear
POS_X=0
POS_Y=0
HELP=HELP_GEAR

[GEAR_2]
RATIOS=second.rto
NAME=Second gear
POS_X=0
POS_Y=1
HELP=HELP_GEAR

[FINAL_GEAR_RATIO]
RATIOS=final.rto
NAME=Final Gear Ratio
POS_X=0.5
POS_Y=3
HELP="Pick a final drive"

[GEAR_SET_0]
NAME=Short
GEAR_1=3.5
GEAR_2=2.2

[GEAR_SET_1]
NAME=Long
GEAR_1=3.1
GEAR_2=1.9
"""


@pytest.fixture
def setup_dir(tmp_path):
    (tmp_path / 'setup.ini').write_text(SETUP_INI)
    (tmp_path / 'first.rto').write_bytes(b'short|3.5\r\nlong|3.1\r\n')
    (tmp_path / 'second.rto').write_bytes(b'short|2.2\r\nlong|1.9\r\n')
    (tmp_path / 'final.rto').write_bytes(b'3.90|3.9\r\n4.10|4.1\r\n')
    return tmp_path


def test_setup_per_gear(setup_dir):
    setup = SetupIni.from_data_interface(DataFolderInterface(setup_dir))
    config = load_gear_config(setup)
    assert isinstance(config, PerGearConfig)
    assert [gear.gear_id for gear in config.gears] == ['GEAR_1', 'GEAR_2']
    assert config.gears[0].ratios() == [('short', 3.5), ('long', 3.1)]

    data = GearData.load_from_parent(setup)
    assert data.final_drive.help_is_text
    assert data.final_drive.help_data == 'Pick a final drive'
    assert data.final_drive.help_value() == '"Pick a final drive"'


def test_setup_uses_gear_sets_when_selected(setup_dir):
    text = (setup_dir / 'setup.ini').read_text().replace('USE_GEARSET=0', 'USE_GEARSET=1')
    (setup_dir / 'setup.ini').write_text(text)
    config = load_gear_config(SetupIni.from_data_interface(DataFolderInterface(setup_dir)))
    assert isinstance(config, GearSetConfig)
    assert [(s.name, s.ratios) for s in config.gear_sets] == [('Short', [3.5, 2.2]), ('Long', [3.1, 1.9])]


def test_setup_rewrite_replaces_gear_sections(setup_dir):
    di = DataFolderInterface(setup_dir)
    setup = SetupIni.from_data_interface(di)
    data = GearData(PerGearConfig([SingleGear.new_gear(1, [('a', 3.0)])]),
                    SingleGear.new_final_drive([('3.70', 3.7)]))
    data.update_car_data(setup)
    setup.write()

    ini = Ini.load_from_file(setup_dir / 'setup.ini')
    assert ini.get_value('GEAR_1', 'RATIOS') == 'first.rto'
    assert ini.get_value('GEAR_1', 'NAME') == 'First gear'
    assert not ini.contains_section('GEAR_2')
    assert not ini.contains_section('GEAR_SET_0')
    assert ini.get_value('GEARS', 'USE_GEARSET') == '0'
    assert not (setup_dir / 'second.rto').exists()
    assert (setup_dir / 'first.rto').read_bytes() == b'a|3\r\n'
    assert (setup_dir / 'final.rto').read_bytes() == b'3.70|3.7\r\n'


def test_setup_missing_ratio_file(setup_dir):
    (setup_dir / 'second.rto').unlink()
    with pytest.raises(InvalidCar):
        GearData.load_from_parent(SetupIni.from_data_interface(DataFolderInterface(setup_dir)))


def test_missing_property_message():
    with pytest.raises(MissingMandatoryProperty, match=r'ENGINE_DATA\.ALTITUDE_SENSITIVITY in engine\.ini'):
        EngineData.load_from_parent(IniFile(None, 'engine.ini', Ini.load_from_string('[ENGINE_DATA]\n')))
