"""
Decimal handling for quantities and money.

Quantities and amounts are stored as SQL NUMERIC and handled as Decimal inside the
services; JSON payloads carry plain numbers.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation


def to_decimal(value) -> Decimal:
    """Parse a JSON scalar into a finite Decimal. Raises ValueError otherwise."""
    if value is None or isinstance(value, bool):
        raise ValueError("not a number")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (int, float)):
        d = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError("not a number")
        try:
            d = Decimal(stripped)
        except InvalidOperation:
            raise ValueError("not a number")
    else:
        raise ValueError("not a number")

    if not d.is_finite():
        raise ValueError("not a finite number")
    return d


def to_json_number(value):
    """Decimal -> int when integral, float otherwise (None passes through)."""
    if value is None:
        return None
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    if d == d.to_integral_value():
        return int(d)
    return float(d)


# Scales of the NUMERIC columns: quantities (14, 3), money (14, 2)
QTY_PLACES = 3
MONEY_PLACES = 2


def decimal_places(value: Decimal) -> int:
    """Number of digits after the decimal point (trailing zeros ignored)."""
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent)


def fits_scale(value: Decimal, places: int) -> bool:
    return decimal_places(value) <= places
