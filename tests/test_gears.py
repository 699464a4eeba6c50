from __future__ import annotations

import pytest

from engine_crane.editor.gears import (MAX_GEARS, CustomizableGears, FinalDrive, FixedGears, GearConfigType,
                                       GearSets, RatioSet, convert_gear_configuration, gear_configuration_builder)
from engine_crane.errors import ArgumentError, InvalidUpdate
from engine_crane.ini_parser import Ini

STOCK = [3.5, 2.2, 1.6, 1.25, 1.0, 0.85]
LONG = [3.1, 2.0, 1.5, 1.15, 0.95, 0.8]

GEAR_SETS_SETUP = """\
[GEARS]
USE_GEARSET=1

[GEAR_SET_0]
NAME=Stock
GEAR_1=3.5
GEAR_2=2.2
GEAR_3=1.6
GEAR_4=1.25
GEAR_5=1.0
GEAR_6=0.85

[GEAR_SET_1]
NAME=Long
GEAR_1=3.1
GEAR_2=2.0
GEAR_3=1.5
GEAR_4=1.15
GEAR_5=0.95
GEAR_6=0.8
"""


def _drivetrain(car_path) -> Ini:
    return Ini.load_from_file(car_path / 'data' / 'drivetrain.ini')


def _gear_ratios(ini: Ini):
    count = int(ini.get_value('GEARS', 'COUNT'))
    return [float(ini.get_value('GEARS', f"GEAR_{n}")) for n in range(1, count + 1)]


def test_ratio_set():
    ratios = RatioSet()
    long_idx = ratios.insert('long', 3.1)
    short_idx = ratios.insert('shorter', 3.5)
    assert ratios.max_name_len() == 7
    assert ratios.selected_ratio() == pytest.approx(3.1)
    ratios.set_default(short_idx)
    assert ratios.selected_ratio() == pytest.approx(3.5)
    assert ratios.remove(short_idx)
    assert ratios.default_idx() is None
    assert ratios.max_name_len() == 4
    assert not ratios.remove(short_idx)
    # indices are never handed out twice
    assert ratios.insert('new', 3.3) not in (long_idx, short_idx)
    with pytest.raises(ArgumentError):
        ratios.set_default(99)


def test_final_drive_fallback():
    final = FinalDrive(3.9)
    final.remove_ratio(final.ratio_set.default_idx())
    assert final.selected_ratio() == pytest.approx(3.0)


def test_builder_fixed(make_car):
    config = gear_configuration_builder(make_car())
    assert isinstance(config, FixedGears)
    assert config.get_config_type() is GearConfigType.FIXED
    assert config.drivetrain_ratios() == STOCK
    assert config.final_drive.selected_ratio() == pytest.approx(3.9)
    assert not config.needs_setup_file()


def test_fixed_remove_gear(make_car):
    car_path = make_car()
    config = gear_configuration_builder(car_path)
    config.remove_gear()
    config.update_ratio(0, 3.6)
    config.apply_to_car(car_path)

    ini = _drivetrain(car_path)
    assert _gear_ratios(ini) == [3.6, 2.2, 1.6, 1.25, 1.0]
    assert not ini.section_contains_property('GEARS', 'GEAR_6')
    assert ini.get_value('GEARS', 'FINAL') == '3.900'
    assert not (car_path / 'data' / 'setup.ini').exists()


def test_fixed_gear_limits(make_car):
    config = gear_configuration_builder(make_car())
    config.add_gear()
    with pytest.raises(InvalidUpdate):
        config.drivetrain_ratios()
    config.update_ratio(6, 0.7)
    assert config.drivetrain_ratios()[-1] == pytest.approx(0.7)
    while len(config.updated) < MAX_GEARS:
        config.add_gear()
    with pytest.raises(InvalidUpdate):
        config.add_gear()
    with pytest.raises(ArgumentError):
        config.update_ratio(MAX_GEARS, 1.0)


def test_final_drive_choices_create_setup(make_car):
    car_path = make_car()
    config = gear_configuration_builder(car_path)
    idx = config.final_drive.add_ratio('', 4.1)
    config.final_drive.set_default(idx)
    assert config.needs_setup_file()
    config.apply_to_car(car_path)

    assert _drivetrain(car_path).get_value('GEARS', 'FINAL') == '4.100'
    setup = Ini.load_from_file(car_path / 'data' / 'setup.ini')
    assert setup.get_value('FINAL_GEAR_RATIO', 'RATIOS') == 'final.rto'
    assert not setup.contains_section('GEARS')

    reloaded = gear_configuration_builder(car_path)
    assert isinstance(reloaded, FixedGears)
    assert [ratio for _, ratio in reloaded.final_drive.ratio_set.to_pairs()] == [3.9, 4.1]
    assert reloaded.final_drive.selected_ratio() == pytest.approx(4.1)


def test_gear_sets(make_car):
    car_path = make_car(extra_data={'setup.ini': GEAR_SETS_SETUP.encode()})
    config = gear_configuration_builder(car_path)
    assert isinstance(config, GearSets)
    assert [str(label) for label in config.labels()] == ['Stock', 'Long']
    assert config.default_gearset.idx == 0

    config.set_default(1)
    config.update_ratio(1, 5, 0.75)
    config.apply_to_car(car_path)

    assert _gear_ratios(_drivetrain(car_path)) == LONG[:5] + [0.75]
    setup = Ini.load_from_file(car_path / 'data' / 'setup.ini')
    assert setup.get_value('GEARS', 'USE_GEARSET') == '1'
    assert setup.get_value('GEAR_SET_0', 'NAME') == 'Stock'
    assert float(setup.get_value('GEAR_SET_1', 'GEAR_6')) == pytest.approx(0.75)


def test_gear_sets_add_and_remove(make_car):
    config = gear_configuration_builder(make_car(extra_data={'setup.ini': GEAR_SETS_SETUP.encode()}))
    label = config.add_gear_set('Drag', [4.0, 3.0])
    assert label.idx == 2
    config.add_gear()
    with pytest.raises(InvalidUpdate):
        config.gear_set_ratios(label)
    config.remove_gear()
    assert config.gear_set_ratios(label) == [4.0, 3.0]

    config.remove_gear_set(0)
    assert config.default_gearset is None
    assert config.drivetrain_ratios() == LONG
    with pytest.raises(ArgumentError):
        config.set_default(0)


def test_customizable_gears(make_car):
    car_path = make_car()
    config = convert_gear_configuration(gear_configuration_builder(car_path), GearConfigType.PER_GEAR)
    assert isinstance(config, CustomizableGears)
    assert config.gear_numbers() == [1, 2, 3, 4, 5, 6]
    idx = config.add_ratio(1, 'short', 3.8)
    config.set_default_ratio(1, idx)
    config.apply_to_car(car_path)

    assert _gear_ratios(_drivetrain(car_path))[0] == pytest.approx(3.8)
    setup = Ini.load_from_file(car_path / 'data' / 'setup.ini')
    assert setup.get_value('GEARS', 'USE_GEARSET') == '0'
    assert setup.get_value('GEAR_1', 'RATIOS') == 'first.rto'
    assert setup.get_value('GEAR_6', 'RATIOS') == 'sixth.rto'
    assert (car_path / 'data' / 'first.rto').read_bytes() == b'3.5|3.5\r\nshort|3.8\r\n'

    reloaded = gear_configuration_builder(car_path)
    assert isinstance(reloaded, CustomizableGears)
    assert reloaded.gears[1].selected_ratio() == pytest.approx(3.8)


def test_customizable_gear_without_ratios(make_car):
    config = convert_gear_configuration(gear_configuration_builder(make_car()), GearConfigType.PER_GEAR)
    assert config.add_gear() == 7
    with pytest.raises(InvalidUpdate):
        config.drivetrain_ratios()
    config.remove_gear()
    with pytest.raises(ArgumentError):
        config.add_ratio(7, '', 0.7)


def test_convert_gear_sets_is_lossy(make_car):
    config = gear_configuration_builder(make_car(extra_data={'setup.ini': GEAR_SETS_SETUP.encode()}))
    with pytest.raises(InvalidUpdate):
        convert_gear_configuration(config, GearConfigType.FIXED)
    fixed = convert_gear_configuration(config, GearConfigType.FIXED, allow_lossy=True)
    assert isinstance(fixed, FixedGears)
    assert fixed.drivetrain_ratios() == STOCK


def test_convert_fixed_to_gear_sets(make_car):
    config = convert_gear_configuration(gear_configuration_builder(make_car()), GearConfigType.GEAR_SETS)
    assert isinstance(config, GearSets)
    assert [label.name for label in config.labels()] == ['Default']
    assert config.drivetrain_ratios() == STOCK
    with pytest.raises(ArgumentError):
        convert_gear_configuration(config, GearConfigType.GEAR_SETS)
