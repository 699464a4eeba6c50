from __future__ import annotations

import pytest

from engine_crane.numeric import (clamp, format_number, kw_to_bhp, lerp, normal_lerp, round_float_to,
                                  round_half_away, round_up_to_nearest_multiple, trunc_div, trunc_mod)


@pytest.mark.parametrize('value, expected', [
    (0.5, 1),
    (1.5, 2),
    (2.5, 3),
    (-0.5, -1),
    (-2.5, -3),
    (2.4999, 2),
])
def test_round_half_away(value, expected):
    assert round_half_away(value) == expected


def test_round_float_to():
    assert round_float_to(3.14159, 2) == 3.14
    assert round_float_to(0.125, 2) == 0.13
    assert round_float_to(-0.125, 2) == -0.13


def test_round_up_to_nearest_multiple():
    assert round_up_to_nearest_multiple(370, 50) == 400
    assert round_up_to_nearest_multiple(400, 50) == 400
    assert round_up_to_nearest_multiple(12, 50) == 50


def test_truncating_division():
    assert trunc_div(7, 2) == 3
    assert trunc_div(-7, 2) == -3
    assert trunc_mod(-7, 2) == -1
    assert trunc_mod(7, -2) == 1


def test_format_number():
    assert format_number(320.0) == '320'
    assert format_number(3.58) == '3.58'
    assert format_number(-2.0) == '-2'
    assert 'e' not in format_number(1e-7)
    assert format_number(1e-7) == '0.0000001'


def test_lerp_and_clamp():
    assert lerp(0.32, 0.07, 0.0) == 0.32
    assert lerp(0.0, 10.0, 0.25) == 2.5
    assert clamp(1.4, 0.0, 1.0) == 1.0
    assert clamp(-1.0, 0.0, 1.0) == 0.0


def test_normal_lerp_midpoint_is_halfway():
    assert normal_lerp(0.32, 0.07, 0.5, 0.2) == pytest.approx(0.195)
    assert normal_lerp(0.32, 0.07, 0.0, 0.2) == pytest.approx(0.32, abs=0.01)
    assert normal_lerp(0.32, 0.07, 1.0, 0.2) == pytest.approx(0.07, abs=0.01)


def test_kw_to_bhp():
    assert kw_to_bhp(100) == pytest.approx(134.1)
