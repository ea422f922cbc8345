"""Duration strings as documented on the AutomationRule resource.

Durations are a sequence of decimal numbers, each with an optional fraction
and a mandatory unit: ``500ms``, ``30s``, ``1m30s``, ``1.5h``. Valid units
are ``ns``, ``us`` (or ``µs``), ``ms``, ``s``, ``m`` and ``h``. The bare
string ``0`` is also accepted.
"""

from __future__ import annotations

import re

_UNIT_SECONDS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_RE_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse *value* into seconds.

    Raises:
        ValueError: if *value* is empty or not a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0

    pos = 0
    total = 0.0
    while pos < len(text):
        match = _RE_COMPONENT.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


def parse_duration_default(value: str, default: float) -> float:
    """Like :func:`parse_duration` but returns *default* for an empty value."""
    if not value or not value.strip():
        return default
    return parse_duration(value)
