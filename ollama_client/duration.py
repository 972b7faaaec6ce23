"""Compact duration text used by the ``keep_alive`` request field.

Text has the form ``[<n>d][<n>h][<n>m][<n>s]``. Encoding works on whole
seconds: any sub-second component is truncated before formatting, so
``timedelta(milliseconds=1500)`` encodes as ``"1s"``. The zero interval and
the empty string are equivalent. Negative intervals are not supported.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer

from .errors import DurationError, InvalidNumber, InvalidUnit, TrailingDigits

_DIGITS = "0123456789"

# Canonical (descending) order; encode relies on it.
_UNITS: tuple[tuple[str, int], ...] = (
    ("d", 86_400),
    ("h", 3_600),
    ("m", 60),
    ("s", 1),
)
_UNIT_SECONDS = dict(_UNITS)


def format_duration(interval: timedelta) -> str:
    """Encode ``interval`` as duration text, e.g. ``2d5h30m``."""
    if interval < timedelta(0):
        raise DurationError(f"negative durations are not supported: {interval!r}")
    remaining = interval // timedelta(seconds=1)
    if remaining == 0:
        return ""
    parts: list[str] = []
    for unit, size in _UNITS:
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{unit}")
    return "".join(parts)


def parse_duration(text: str) -> timedelta:
    """Decode duration text; units may appear in any order and are summed."""
    total = 0
    digits = ""
    for pos, ch in enumerate(text):
        if ch in _DIGITS:
            digits += ch
            continue
        # The number is checked before the unit, so "am" is a bad number.
        if not digits:
            raise InvalidNumber(f"missing number before {ch!r} at position {pos}")
        size = _UNIT_SECONDS.get(ch)
        if size is None:
            raise InvalidUnit(ch, pos)
        total += int(digits) * size
        digits = ""
    if digits:
        raise TrailingDigits(f"number {digits!r} has no unit suffix")
    try:
        return timedelta(seconds=total)
    except OverflowError as e:
        raise InvalidNumber(f"duration {text!r} is out of range") from e


def _coerce(value: Any) -> Any:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, str):
        return parse_duration(value.strip())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    return value


# pydantic field type: accepts timedelta, duration text or seconds; emits text in JSON mode.
Duration = Annotated[
    timedelta,
    BeforeValidator(_coerce),
    PlainSerializer(format_duration, return_type=str, when_used="json"),
]
