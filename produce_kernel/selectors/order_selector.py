"""
Module: produce_kernel.selectors.order_selector
Responsibility: Read models for orders, their price history and customer
    credit ledgers.
Architecture position: Kernel > Selectors.  Read-only.

OrderInfo is what leaves the kernel: the command façade converts the ORM
order into it before the session closes.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from produce_kernel.domain.order_status import OrderStatus, PaymentStatus
from produce_kernel.models.credit_ledger import CreditEntryType, CreditLedgerEntry
from produce_kernel.models.order import Order, OrderLine, PriceChange
from produce_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OrderLineInfo:
    product_id: UUID
    product_name: str
    quantity: Decimal
    unit: str
    rate: Decimal
    amount: Decimal
    is_contract_price: bool

    @classmethod
    def from_model(cls, line: OrderLine) -> "OrderLineInfo":
        return cls(
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit=line.unit,
            rate=line.rate,
            amount=line.amount,
            is_contract_price=line.is_contract_price,
        )


@dataclass(frozen=True)
class OrderInfo:
    id: UUID
    order_number: str
    customer_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    paid_amount: Decimal
    used_pricing_fallback: bool
    idempotency_key: str | None
    version: int
    lines: tuple[OrderLineInfo, ...]
    created_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    reconciled_at: datetime | None = None

    @property
    def unpaid_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount

    @classmethod
    def from_model(cls, order: Order) -> "OrderInfo":
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            status=OrderStatus(order.status),
            payment_status=PaymentStatus(order.payment_status),
            total_amount=order.total_amount,
            paid_amount=order.paid_amount,
            used_pricing_fallback=order.used_pricing_fallback,
            idempotency_key=order.idempotency_key,
            version=order.version,
            lines=tuple(OrderLineInfo.from_model(line) for line in order.lines),
            created_at=order.created_at,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            reconciled_at=order.reconciled_at,
        )


@dataclass(frozen=True)
class PriceChangeInfo:
    seq: int
    changed_at: datetime
    changed_by_id: UUID
    changed_by_name: str | None
    product_id: UUID
    product_name: str
    old_rate: Decimal | None
    new_rate: Decimal | None
    old_quantity: Decimal | None
    new_quantity: Decimal | None
    old_total: Decimal
    new_total: Decimal
    reason: str | None


@dataclass(frozen=True)
class CreditEntryInfo:
    entry_seq: int
    entry_type: CreditEntryType
    order_number: str | None
    requested_delta: Decimal
    applied_delta: Decimal
    balance_after: Decimal
    description: str | None


class OrderSelector(BaseSelector):
    """Read-only order queries."""

    def get(self, order_id: UUID) -> OrderInfo | None:
        order = self.session.get(Order, order_id)
        return OrderInfo.from_model(order) if order else None

    def by_number(self, order_number: str) -> OrderInfo | None:
        order = self.session.execute(
            select(Order).where(Order.order_number == order_number)
        ).scalar_one_or_none()
        return OrderInfo.from_model(order) if order else None

    def by_idempotency_key(self, idempotency_key: str) -> OrderInfo | None:
        order = self.session.execute(
            select(Order).where(Order.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return OrderInfo.from_model(order) if order else None

    def price_history(self, order_id: UUID) -> list[PriceChangeInfo]:
        """Retained price changes, oldest first."""
        rows = self.session.execute(
            select(PriceChange)
            .where(PriceChange.order_id == order_id)
            .order_by(PriceChange.seq)
        ).scalars()
        return [
            PriceChangeInfo(
                seq=pc.seq,
                changed_at=pc.changed_at,
                changed_by_id=pc.changed_by_id,
                changed_by_name=pc.changed_by_name,
                product_id=pc.product_id,
                product_name=pc.product_name,
                old_rate=pc.old_rate,
                new_rate=pc.new_rate,
                old_quantity=pc.old_quantity,
                new_quantity=pc.new_quantity,
                old_total=pc.old_total,
                new_total=pc.new_total,
                reason=pc.reason,
            )
            for pc in rows
        ]

    def credit_ledger(self, customer_id: UUID) -> list[CreditEntryInfo]:
        """The customer's credit movements in application order."""
        rows = self.session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.customer_id == customer_id)
            .order_by(CreditLedgerEntry.entry_seq)
        ).scalars()
        return [
            CreditEntryInfo(
                entry_seq=e.entry_seq,
                entry_type=CreditEntryType(e.entry_type),
                order_number=e.order_number,
                requested_delta=e.requested_delta,
                applied_delta=e.applied_delta,
                balance_after=e.balance_after,
                description=e.description,
            )
            for e in rows
        ]
