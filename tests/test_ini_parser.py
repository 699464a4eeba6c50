from __future__ import annotations

import pytest

from engine_crane.errors import MissingMandatoryProperty
from engine_crane.ini_parser import (Ini, format_float, format_value, get_mandatory_property, get_value,
                                     parse_bool, parse_int, set_float, set_optional_value, set_value)

ENGINE_INI = """\
junk before any section
[HEADER]
VERSION=1 ; trailing comment
POWER_CURVE=power.lut

; a whole line comment
[ENGINE_DATA]
   INERTIA=0.120
LIMITER=7000.0
not a property
MINIMUM=1000
"""


def test_load_drops_comments_and_junk():
    ini = Ini.load_from_string(ENGINE_INI)
    assert ini.section_names() == ['HEADER', 'ENGINE_DATA']
    assert ini.get_value('HEADER', 'VERSION') == '1'
    assert ini.get_value('ENGINE_DATA', 'INERTIA') == '0.120'
    assert ini.property_names('ENGINE_DATA') == ['INERTIA', 'LIMITER', 'MINIMUM']


def test_keys_keep_their_case():
    ini = Ini.load_from_string("[GEARS]\nGEAR_R=-3.2\n")
    assert ini.section_contains_property('GEARS', 'GEAR_R')
    assert not ini.section_contains_property('GEARS', 'gear_r')


def test_to_string_round_trips():
    ini = Ini.load_from_string(ENGINE_INI)
    text = ini.to_string()
    assert 'VERSION=1\n' in text
    assert ';' not in text
    assert Ini.load_from_string(text).get_value('ENGINE_DATA', 'MINIMUM') == '1000'


def test_bytes_with_bom():
    ini = Ini.load_from_bytes(b'\xef\xbb\xbf[INFO]\nSCREEN_NAME=Test\n')
    assert ini.get_value('INFO', 'SCREEN_NAME') == 'Test'


def test_load_from_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Ini.load_from_file(tmp_path / 'nope.ini')


def test_set_and_remove():
    ini = Ini()
    assert ini.set_value('BASIC', 'TOTALMASS', '1200') is None
    assert ini.set_value('BASIC', 'TOTALMASS', '1250') == '1200'
    assert ini.sections_starting_with('BAS') == ['BASIC']
    assert ini.remove_value('BASIC', 'TOTALMASS') == '1250'
    assert ini.remove_value('BASIC', 'TOTALMASS') is None
    assert ini.remove_section('BASIC')
    assert not ini.contains_section('BASIC')


def test_parse_int_accepts_integral_decimals():
    assert parse_int('7000') == 7000
    assert parse_int('7000.0') == 7000
    with pytest.raises(ValueError):
        parse_int('7000.5')


def test_parse_bool():
    assert parse_bool('1') is True
    assert parse_bool('false') is False
    with pytest.raises(ValueError):
        parse_bool('maybe')


def test_format_value():
    assert format_value(True) == '1'
    assert format_value(False) == '0'
    assert format_value(2.0) == '2'
    assert format_value(0.25) == '0.25'
    assert format_value(7) == '7'
    assert format_float(3.9, 3) == '3.900'


def test_typed_helpers():
    ini = Ini.load_from_string(ENGINE_INI)
    assert get_value(ini, 'ENGINE_DATA', 'LIMITER', parse_int) == 7000
    assert get_value(ini, 'ENGINE_DATA', 'MISSING', parse_int) is None
    assert get_value(ini, 'HEADER', 'POWER_CURVE', float) is None
    assert get_mandatory_property(ini, 'ENGINE_DATA', 'INERTIA', float) == pytest.approx(0.12)


def test_missing_mandatory_property():
    ini = Ini.load_from_string(ENGINE_INI)
    with pytest.raises(MissingMandatoryProperty) as exc_info:
        get_mandatory_property(ini, 'ENGINE_DATA', 'LIMITER_HZ', parse_int, 'engine.ini')
    assert exc_info.value.section == 'ENGINE_DATA'
    assert exc_info.value.key == 'LIMITER_HZ'


def test_setters():
    ini = Ini()
    set_value(ini, 'GEARS', 'COUNT', 6)
    set_float(ini, 'GEARS', 'FINAL', 3.9, 3)
    set_optional_value(ini, 'DAMAGE', 'TURBO_BOOST_THRESHOLD', 1.0, 2)
    assert ini.get_value('GEARS', 'COUNT') == '6'
    assert ini.get_value('GEARS', 'FINAL') == '3.900'
    assert ini.get_value('DAMAGE', 'TURBO_BOOST_THRESHOLD') == '1.00'
    set_optional_value(ini, 'DAMAGE', 'TURBO_BOOST_THRESHOLD', None)
    assert not ini.section_contains_property('DAMAGE', 'TURBO_BOOST_THRESHOLD')
