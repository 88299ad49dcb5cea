"""Conversion of real-time clock readings to Unix time."""

from __future__ import annotations

_U64_MASK = (1 << 64) - 1
_SECONDS_PER_DAY = 60 * 60 * 24


def _cdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def julian_day_number(day: int, month: int, year: int) -> int:
    """Return the Julian day number of a Gregorian calendar date."""
    shift = _cdiv(month - 14, 12)
    return (
        _cdiv(1461 * (year + 4800 + shift), 4)
        + _cdiv(367 * (month - 2 - 12 * shift), 12)
        - _cdiv(3 * _cdiv(year + 4900 + shift, 100), 4)
        + day
        - 32075
    )


def unix_epoch(second: int, minute: int, hour: int, day: int, month: int, year: int) -> int:
    """Return seconds since 1970-01-01 00:00:00, wrapped to 64 bits."""
    day_diff = (julian_day_number(day, month, year) - julian_day_number(1, 1, 1970)) & _U64_MASK
    return (day_diff * _SECONDS_PER_DAY + hour * 3600 + minute * 60 + second) & _U64_MASK