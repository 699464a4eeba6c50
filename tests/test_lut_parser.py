from __future__ import annotations

import pytest

from engine_crane.data_interface import DataFolderInterface
from engine_crane.errors import InvalidCar, MissingMandatoryProperty
from engine_crane.ini_parser import Ini, parse_int
from engine_crane.lut_parser import (InlineLut, LutFile, LutInterpolator, LutProperty, PathOnlyLut,
                                     format_inline_lut, format_lut, parse_inline_lut, parse_lut)


def test_parse_lut_keeps_file_order_and_skips_comments():
    text = "; rpm|torque\r\n1000|150\r\n\r\n 2000 | 200 ;peak\r\n1500|175\r\n"
    assert parse_lut(text) == [(1000.0, 150.0), (2000.0, 200.0), (1500.0, 175.0)]


def test_parse_lut_typed_keys():
    assert parse_lut("1000|150\n", key_type=parse_int) == [(1000, 150.0)]


def test_parse_lut_rejects_short_records():
    with pytest.raises(ValueError):
        parse_lut("1000|150\n2000\n")


def test_parse_lut_rejects_bad_values():
    with pytest.raises(ValueError):
        parse_lut("1000|lots\n")


def test_format_lut():
    assert format_lut([(1000, 150.0), (2000, 202.5)]) == b"1000|150\r\n2000|202.5\r\n"


def test_inline_lut():
    assert parse_inline_lut("(0=0|3000=0.5|7000=0.8)") == [(0.0, 0.0), (3000.0, 0.5), (7000.0, 0.8)]
    assert format_inline_lut([(0, 0.0), (3000, 0.5)]) == "(0=0|3000=0.5)"
    with pytest.raises(ValueError):
        parse_inline_lut("0=0|3000=0.5")


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'data'
    path.mkdir()
    (path / 'power.lut').write_bytes(b"1000|150\r\n2000|200\r\n")
    (path / 'broken.lut').write_bytes(b"1000\r\n")
    return path


def test_file_backed_property(data_dir):
    di = DataFolderInterface(data_dir)
    ini = Ini.load_from_string("[HEADER]\nPOWER_CURVE=power.lut\n")
    prop = LutProperty.mandatory_from_ini('HEADER', 'POWER_CURVE', ini, di, key_type=parse_int)
    assert isinstance(prop.lut, LutFile)
    assert prop.num_entries() == 2
    assert prop.update([(1000, 160.0)]) == [(1000, 150.0), (2000, 200.0)]
    prop.update_car_data(ini, di)
    di.flush()
    assert (data_dir / 'power.lut').read_bytes() == b"1000|160\r\n"
    assert ini.get_value('HEADER', 'POWER_CURVE') == 'power.lut'


def test_inline_property(data_dir):
    di = DataFolderInterface(data_dir)
    ini = Ini.load_from_string("[CONTROLLER_0]\nLUT=(0=0|3000=0.5)\n")
    prop = LutProperty.mandatory_from_ini('CONTROLLER_0', 'LUT', ini, di)
    assert isinstance(prop.lut, InlineLut)
    prop.update([(0, 0.0), (4000, 1.0)])
    prop.update_car_data(ini, di)
    assert ini.get_value('CONTROLLER_0', 'LUT') == '(0=0|4000=1)'


def test_mandatory_property_errors(data_dir):
    di = DataFolderInterface(data_dir)
    ini = Ini.load_from_string("[HEADER]\nPOWER_CURVE=broken.lut\nCOAST=missing.lut\n")
    with pytest.raises(MissingMandatoryProperty):
        LutProperty.mandatory_from_ini('HEADER', 'NOT_THERE', ini, di)
    with pytest.raises(InvalidCar):
        LutProperty.mandatory_from_ini('HEADER', 'POWER_CURVE', ini, di)
    with pytest.raises(InvalidCar):
        LutProperty.mandatory_from_ini('HEADER', 'COAST', ini, di)


def test_optional_property_degrades_to_none(data_dir):
    di = DataFolderInterface(data_dir)
    ini = Ini.load_from_string("[HEADER]\nPOWER_CURVE=broken.lut\n")
    assert LutProperty.optional_from_ini('HEADER', 'POWER_CURVE', ini, di) is None
    assert LutProperty.optional_from_ini('HEADER', 'NOT_THERE', ini, di) is None


def test_path_only_property_cannot_be_updated():
    prop = LutProperty.path_only('HEADER', 'POWER_CURVE', 'somewhere.lut')
    assert isinstance(prop.lut, PathOnlyLut)
    assert prop.to_vec() == []
    assert prop.property_value() == 'somewhere.lut'
    with pytest.raises(ValueError):
        prop.update([(1, 1)])


def test_delete_file_backed_property(data_dir):
    di = DataFolderInterface(data_dir)
    ini = Ini.load_from_string("[HEADER]\nPOWER_CURVE=power.lut\n")
    prop = LutProperty.mandatory_from_ini('HEADER', 'POWER_CURVE', ini, di)
    prop.delete_from_car_data(ini, di)
    di.flush()
    assert not ini.section_contains_property('HEADER', 'POWER_CURVE')
    assert not (data_dir / 'power.lut').exists()


def test_interpolator():
    interpolator = LutInterpolator([(1000, 100.0), (3000, 300.0)])
    assert interpolator.get_value(1000) == 100.0
    assert interpolator.get_value(2500) == pytest.approx(250.0)
    assert interpolator.get_value(999) is None
    assert interpolator.get_value(3001) is None
    assert LutInterpolator([]).get_value(1000) is None


def test_interpolator_from_lut():
    prop = LutProperty('X', 'Y', InlineLut([(0, 0.0), (10, 1.0)]))
    assert LutInterpolator.from_lut(prop).get_value(5) == pytest.approx(0.5)
    assert LutInterpolator.from_lut(PathOnlyLut('a.lut')).get_value(5) is None
