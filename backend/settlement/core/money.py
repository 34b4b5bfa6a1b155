"""
Currency helpers.

Bookings and coupons work in major units (Decimal, two places); payments work
in integer minor units (cents). Every crossing between the two goes through
these functions.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats such as 19.99 from turning into 19.989999...
    return Decimal(str(value))


def quantize(amount) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Major units -> integer minor units, half-up rounded (19.995 -> 2000)."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(int(amount)) / 100).quantize(CENT)


def floor_percentage(amount, percentage: int) -> Decimal:
    """floor(amount * percentage / 100), whole major units."""
    raw = to_decimal(amount) * Decimal(int(percentage)) / Decimal(100)
    return raw.to_integral_value(rounding=ROUND_FLOOR)
