"""
Module: produce_kernel.models.credit_ledger
Responsibility: Append-only ledger of signed credit movements per customer.
Architecture position: Kernel > Models.  May import from db/base.py only.

Each row records the delta that was requested, the delta actually applied
after clamping the balance at zero, and the balance that resulted.  Folding
applied deltas in insertion order reproduces Customer.current_credit.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from produce_kernel.db.base import TrackedBase, UUIDString


class CreditEntryType(str, Enum):
    ORDER_CREATED = "order_created"
    PRICE_ADJUSTMENT = "price_adjustment"
    PAYMENT = "payment"
    CANCELLATION_RESTORE = "cancellation_restore"
    ADJUSTMENT = "adjustment"


class CreditLedgerEntry(TrackedBase):
    """One signed movement of a customer's credit balance."""

    __tablename__ = "credit_ledger_entries"

    __table_args__ = (
        UniqueConstraint("customer_id", "entry_seq", name="uq_credit_entry_customer_seq"),
        Index("idx_credit_entry_order", "order_id"),
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    # Per-customer monotonic sequence from SequenceService; orders the fold
    entry_seq: Mapped[int] = mapped_column(nullable=False)

    entry_type: Mapped[CreditEntryType] = mapped_column(String(30), nullable=False)

    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=True,
    )
    order_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    requested_delta: Mapped[Decimal] = mapped_column(nullable=False)
    applied_delta: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
