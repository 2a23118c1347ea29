"""Parsing of human-readable sizes such as ``"104.5 GB"``."""

from __future__ import annotations

import re

# Decimal multipliers: 1 kB is 1000 bytes.  A binary marker ("KiB") is
# accepted but does not change the multiplier.
KB = 1000
MB = 1000 * KB
GB = 1000 * MB
TB = 1000 * GB
PB = 1000 * TB

_DECIMAL_MAP = {"k": KB, "m": MB, "g": GB, "t": TB, "p": PB}

_SIZE_RE = re.compile(r"^(\d+(\.\d+)*) ?([kKmMgGtTpP])?[iI]?[bB]?$")


def from_human_size(size: str) -> int:
    """Return the number of bytes in a human-readable size string.

    Raises ValueError when the string is not a valid size.
    """
    match = _SIZE_RE.match(size)
    if match is None:
        raise ValueError(f"invalid size: '{size}'")
    try:
        value = float(match.group(1))
    except ValueError as exc:
        raise ValueError(f"invalid size: '{size}'") from exc
    prefix = match.group(3)
    if prefix:
        value *= _DECIMAL_MAP[prefix.lower()]
    return int(value)


def to_giga_units(size: str) -> int:
    """Return the whole number of gigabytes (10**9 bytes) in ``size``."""
    return from_human_size(size) // GB