"""
Parse-or-default helpers for untrusted numeric values.

The reasoning service and the exchange both hand us numbers as strings ("85%", "3000",
"", "0", None). Every conversion goes through here so the fallback for each field is
decided in one place:

- confidence: `parse_percentage(..., default=50)`
- leverage: `parse_number(...)`, caller falls back to the stage cap
- stop-loss / take-profit: `parse_positive_price(...)`, None means "leave unchanged"
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

_RE_LEADING_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def parse_number(value: Any) -> float | None:
    """Return a finite float, or None if the value is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
        return out if math.isfinite(out) else None
    if not isinstance(value, str):
        return None
    text = value.strip().replace(",", "")
    m = _RE_LEADING_NUMBER.match(text)
    if not m:
        return None
    try:
        out = float(m.group(0))
    except ValueError:
        return None
    return out if math.isfinite(out) else None


def parse_float(value: Any, default: float = 0.0) -> float:
    out = parse_number(value)
    return default if out is None else out


def parse_percentage(value: Any, default: float = 50.0) -> float:
    """Numeric value in [0, 100]; anything else yields `default`."""
    out = parse_number(value)
    if out is None or out < 0.0 or out > 100.0:
        return float(default)
    return out


def parse_positive_price(value: Any) -> float | None:
    """
    A trigger price is only usable if it is finite and strictly positive.

    Blank strings, "0" and unparsable values mean "not provided"; they must never be
    coerced to 0 because that would clear an existing trigger.
    """
    out = parse_number(value)
    if out is None or out <= 0:
        return None
    return out


def floor_to_step(value: float, step: float = 0.01) -> Decimal:
    """Round down to a multiple of `step` without binary float artefacts."""
    try:
        v = Decimal(str(value))
        s = Decimal(str(step))
    except InvalidOperation:
        return Decimal(0)
    if s <= 0:
        return v
    return (v / s).to_integral_value(rounding=ROUND_FLOOR) * s


def format_amount(value: float, places: int = 2) -> str:
    return f"{float(value):.{int(places)}f}"
