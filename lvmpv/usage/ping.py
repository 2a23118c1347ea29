"""Interval between periodic usage pings."""

from __future__ import annotations

import os
import re
from datetime import timedelta
from fractions import Fraction

PING_PERIOD_ENV = "OPENEBS_IO_ANALYTICS_PING_INTERVAL"

DEFAULT_PING_PERIOD = timedelta(hours=24)
# Periods below this are replaced with the default.
MINIMUM_PING_PERIOD = timedelta(hours=1)

_NANOSECOND = 1
_MICROSECOND = 1000 * _NANOSECOND
_MILLISECOND = 1000 * _MICROSECOND
_SECOND = 1000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE

_UNITS = {
    "ns": _NANOSECOND,
    "us": _MICROSECOND,
    "\u00b5s": _MICROSECOND,
    "\u03bcs": _MICROSECOND,
    "ms": _MILLISECOND,
    "s": _SECOND,
    "m": _MINUTE,
    "h": _HOUR,
}

_MAX_NANOS = (1 << 63) - 1
_COMPONENT_RE = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")


def parse_duration(value: str) -> int:
    """Parse a duration such as ``"1h30m"`` or ``"-1.5s"`` into nanoseconds.

    Raises ValueError for malformed input.
    """
    text = value
    negative = False
    if text and text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _COMPONENT_RE.match(text, pos)
        whole, frac, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not frac:
            raise ValueError(f"invalid duration {value!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {value!r}")
        if unit not in _UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {value!r}")
        number = Fraction(int(whole or "0"))
        if frac:
            number += Fraction(int(frac), 10 ** len(frac))
        total += number * _UNITS[unit]
        if total > _MAX_NANOS + (1 if negative else 0):
            raise ValueError(f"invalid duration {value!r}")
        pos = match.end()

    nanos = int(total)
    return -nanos if negative else nanos


def ping_period() -> timedelta:
    """Return the ping interval configured in the environment.

    Missing, malformed or too short values fall back to 24 hours.
    """
    raw = os.environ.get(PING_PERIOD_ENV, "")
    try:
        nanos = parse_duration(raw) if raw else 0
    except ValueError:
        nanos = 0
    period = timedelta(microseconds=nanos // _MICROSECOND)
    if nanos <= 0 or period < MINIMUM_PING_PERIOD:
        return DEFAULT_PING_PERIOD
    return period