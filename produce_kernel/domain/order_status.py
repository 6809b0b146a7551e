"""
Order status rules.

Responsibility:
    The canonical order lifecycle and payment-status derivation.  Pure
    functions; the compare-and-swap that applies a transition lives in
    ``services/status_service.py``.

Lifecycle:
    pending -> confirmed | cancelled
    confirmed -> delivered | cancelled
    delivered, cancelled: terminal

    Fulfilment stages such as packing or shipping are tracked outside this
    machine and never affect credit.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from produce_kernel.domain.money import to_cents


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """True when ``to_status`` is directly reachable from ``from_status``.

    Re-requesting the current status is not a transition; callers treat it
    as a no-op before asking.
    """
    return to_status in ALLOWED_TRANSITIONS[OrderStatus(from_status)]


def derive_payment_status(paid_amount: Decimal, total_amount: Decimal) -> PaymentStatus:
    """Payment status from an integer-cent comparison of paid vs total."""
    paid = to_cents(paid_amount)
    total = to_cents(total_amount)
    # Nothing paid is unpaid, zero-total orders included.
    if paid <= 0:
        return PaymentStatus.UNPAID
    if paid >= total:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL
