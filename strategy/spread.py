"""Spread between the last traded price and the index (reference) price."""
import math
from enum import Enum
from typing import Any, Optional


class Direction(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


def parse_price(value: Any) -> Optional[float]:
    """Return a strictly positive finite float, or None for anything else.

    Bybit sends prices as strings and omits fields on delta updates, so
    ``None``, ``""`` and non-numeric strings are all expected here.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def compute_spread_pct(traded: Any, reference: Any) -> float:
    t = parse_price(traded)
    r = parse_price(reference)
    if t is None or r is None:
        return 0.0
    return ((t - r) / r) * 100


def classify_direction(traded: float, reference: float) -> Direction:
    # Equality falls through to SHORT.
    if traded < reference:
        return Direction.LONG
    return Direction.SHORT
