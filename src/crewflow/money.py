"""Decimal money helpers.

Amounts are kept as ``Decimal`` quantized to cents inside the engine and
converted to integer minor units only at the payment gateway boundary.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Currencies without a minor unit at the gateway.
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "IDR"})


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize(value: Any) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    return quantize(amount * rate)


def to_minor_units(amount: Decimal, currency: str = "USD") -> int:
    """Convert a major-unit amount to the gateway's integer minor units."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(to_decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((quantize(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str = "USD") -> Decimal:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return quantize(Decimal(amount))
    return quantize(Decimal(amount) / 100)


def split_in_half(total_minor: int) -> tuple[int, int]:
    """
    Split an amount into (first, second) halves in minor units.

    The first half takes the odd cent so that ``first + second == total``.
    """
    second = total_minor // 2
    return total_minor - second, second
