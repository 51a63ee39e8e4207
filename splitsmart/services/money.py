from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# All ledger math runs on integer cents. 0.01 currency units is one cent.
EPSILON_CENTS = 1
CENT = Decimal("0.01")

Amount = Union[int, float, str, Decimal]


def to_cents(amount: Amount) -> int:
    """
    Convert a currency amount to integer minor units.

    Floats go through ``str`` first so 0.1 + 0.2 style noise does not leak
    into the ledger.
    """

    if isinstance(amount, float):
        amount = str(amount)
    value = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def cents_to_float(cents: int) -> float:
    return float(from_cents(cents))


def is_zero(cents: int) -> bool:
    return abs(cents) <= EPSILON_CENTS


def format_amount(cents: int, currency: str = "") -> str:
    text = f"{from_cents(cents):,.2f}"
    return f"{text} {currency}".strip()
