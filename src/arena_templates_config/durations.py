"""Parsing of Go-style duration strings ("90s", "1h30m", "500ms")."""

from __future__ import annotations

from datetime import timedelta
import re
from typing import Final


_UNITS: Final[dict[str, float]] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a duration string like ``"1h30m"`` into a timedelta.

    A bare ``"0"`` is accepted, every other value needs a unit on each
    component. An optional leading sign is allowed.

    Raises:
        ValueError: If the string is not a valid duration
    """
    text = value.strip()
    if not text:
        msg = "empty duration"
        raise ValueError(msg)
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return timedelta(0)
    pos = 0
    seconds = 0.0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            msg = f"invalid duration {value!r}"
            raise ValueError(msg)
        number, unit = match.groups()
        seconds += float(number) * _UNITS[unit]
        pos = match.end()
    if pos == 0:
        msg = f"invalid duration {value!r}"
        raise ValueError(msg)
    try:
        return timedelta(seconds=sign * seconds)
    except OverflowError as e:
        msg = f"duration {value!r} is out of range"
        raise ValueError(msg) from e


def format_duration(delta: timedelta) -> str:
    """Format a timedelta in the same notation (``"1h30m0s"`` style, trimmed)."""
    total = delta.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{int(hours)}h")
    if minutes:
        parts.append(f"{int(minutes)}m")
    if seconds:
        parts.append(f"{seconds:g}s")
    return sign + "".join(parts)
