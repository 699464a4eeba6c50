from __future__ import annotations

import math
from decimal import Decimal
from statistics import NormalDist


def round_half_away(value: float) -> int:
    """Round to the nearest integer with halves going away from zero."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def round_float_to(value: float, decimal_places: int) -> float:
    factor = float(10 ** decimal_places)
    scaled = value * factor
    if scaled < 0:
        return -math.floor(-scaled + 0.5) / factor
    return math.floor(scaled + 0.5) / factor


def round_up_to_nearest_multiple(value: int, multiple: int) -> int:
    if value < multiple:
        return multiple
    return ((value + (multiple - 1)) // multiple) * multiple


def trunc_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -q
    return q


def trunc_mod(numerator: int, denominator: int) -> int:
    """Remainder whose sign follows the numerator."""
    return numerator - denominator * trunc_div(numerator, denominator)


def format_number(value: float) -> str:
    """Render a float the short way: integral values lose their '.0'."""
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    text = repr(float(value))
    if 'e' in text:
        # no exponent notation; the game and .car checksums expect plain digits
        text = format(Decimal(text), 'f')
    return text


def lerp(start: float, end: float, t: float) -> float:
    return start + (end - start) * t


def normal_lerp(start: float, end: float, t: float, sd: float, mean: float = 0.5) -> float:
    weight = NormalDist(mu=mean, sigma=sd).cdf(t)
    return lerp(start, end, weight)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def kw_to_bhp(kw: float) -> float:
    return kw * 1.341
