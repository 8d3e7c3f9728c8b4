"""
Simulation time literals.

All times are handled as integer picoseconds internally. Configuration files
and simulator output use literals such as ``634ns`` or ``2 ns``.
"""

import re
from typing import Iterable, Optional, Union

UNIT_FACTORS = {
    "fs": 0.001,
    "ps": 1,
    "ns": 1_000,
    "us": 1_000_000,
    "ms": 1_000_000_000,
    "sec": 1_000_000_000_000,
    "s": 1_000_000_000_000,
    "min": 60 * 1_000_000_000_000,
    "hr": 3600 * 1_000_000_000_000,
}

TIME_REGEX = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(hr|min|sec|ms|us|ns|ps|fs|s)?\s*$")


def parse_time(value: Union[str, int, float, None], default_unit: str = "ps") -> int:
    """
    Convert a time literal to picoseconds.

    Args:
        value: ``"2ns"``, ``"2 ns"``, ``"1500"`` or a number
        default_unit: unit applied to bare numbers

    Returns:
        Time in picoseconds

    Raises:
        ValueError: If the literal cannot be parsed
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid time literal: {value!r}")
    if isinstance(value, (int, float)):
        return int(round(value * UNIT_FACTORS[default_unit]))

    match = TIME_REGEX.match(str(value))
    if not match:
        raise ValueError(f"Invalid time literal: {value!r}")
    number, unit = match.groups()
    return int(round(float(number) * UNIT_FACTORS[unit or default_unit]))


def format_ns(time_ps: int) -> str:
    """Format a picosecond time as ``"12.345 ns"`` (``"12 ns"`` if integral)."""
    whole, remainder = divmod(int(time_ps), 1000)
    if remainder:
        return f"{whole}.{remainder:03d} ns"
    return f"{whole} ns"


def earliest_time(times: Iterable[int]) -> int:
    times = list(times)
    return min(times) if times else 0


def latest_time(times: Iterable[int]) -> Optional[int]:
    times = list(times)
    return max(times) if times else None
