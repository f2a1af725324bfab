from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def _quantize(value: float, digits: int) -> Decimal:
    exponent = Decimal(1).scaleb(-digits)
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def round_to(value: float, digits: int = 2) -> float:
    """Round the exact binary value half away from zero, like ``Number.toFixed``."""
    if not math.isfinite(value):
        return value
    try:
        return float(_quantize(value, digits))
    except InvalidOperation:
        return value


def to_fixed(value: float, digits: int = 2) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    try:
        return f"{_quantize(value, digits):f}"
    except InvalidOperation:
        return f"{value:.{digits}f}"


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def parse_amount(value: float | int | str | None) -> float:
    if value is None:
        return 0.0
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return float(value)
