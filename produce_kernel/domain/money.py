"""
Money -- two-decimal arithmetic helpers.

Responsibility:
    Every monetary value in the kernel (rates, line amounts, totals, paid
    amounts, credit balances) is a ``Decimal`` rounded to 2 places with
    ROUND_HALF_UP.  Rounding happens at each computed value so repeated
    deltas never accumulate drift.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValueError when a value cannot be converted to a finite Decimal.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings, floats and Decimals to a finite Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot use boolean {value!r} as a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(value)
        except (InvalidOperation, TypeError) as exc:
            raise ValueError(f"Cannot convert {value!r} to Decimal") from exc
    if not result.is_finite():
        raise ValueError(f"Non-finite number: {value!r}")
    return result


def round2(value: Any) -> Decimal:
    """Round to 2 decimal places, half up."""
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
    """Integer cents of a monetary value (after rounding)."""
    return int(round2(value) * 100)


def line_amount(quantity: Any, rate: Any) -> Decimal:
    """Amount of an order line: round2(quantity * rate)."""
    return round2(to_decimal(quantity) * to_decimal(rate))


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Sum already-rounded amounts and round the result."""
    return round2(sum(amounts, ZERO))
