"""
Module: produce_kernel.models.order
Responsibility: ORM persistence for orders, their lines and the bounded
    price-change audit trail.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - order_number is unique (uq_order_number).
    - idempotency_key is unique when present (uq_order_idempotency_key;
      NULLs never collide).  The constraint, not a prior SELECT, is the
      source of truth for idempotent creation.
    - 0 <= paid_amount <= total_amount (CHECK constraints).
    - Line quantity > 0 and rate >= 0 (CHECK constraints).
    - version is an optimistic lock counter: every ORM flush of an Order
      is conditioned on the version it was loaded with.

Failure modes:
    - IntegrityError on duplicate order_number or idempotency_key.
    - StaleDataError when a flush finds the version changed underneath it.

Audit relevance:
    Orders are never deleted; cancellation is a terminal status.  A set
    reconciled_at permanently locks the order's pricing.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import QUANTITY, Base, TrackedBase, UUIDString
from produce_kernel.domain.order_status import OrderStatus, PaymentStatus


class Order(TrackedBase):
    """
    A customer order.

    Guarantees:
        - total_amount equals the rounded sum of line amounts (maintained by
          OrderLifecycleManager).
        - status moves only along the lifecycle in domain/order_status.py.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        UniqueConstraint("idempotency_key", name="uq_order_idempotency_key"),
        CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
        CheckConstraint("paid_amount >= 0", name="ck_order_paid_non_negative"),
        CheckConstraint("paid_amount <= total_amount", name="ck_order_paid_within_total"),
        Index("idx_order_customer", "customer_id"),
        Index("idx_order_status", "status"),
        Index("idx_order_customer_created", "customer_id", "created_at"),
    )

    order_number: Mapped[str] = mapped_column(String(20), nullable=False)

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Delivery batch assigned by the external scheduler
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    delivery_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    used_pricing_fallback: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reconciled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    @property
    def is_reconciled(self) -> bool:
        return self.reconciled_at is not None

    @property
    def unpaid_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount

    def line_for(self, product_id: UUID) -> "OrderLine | None":
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def __repr__(self) -> str:
        return f"<Order {self.order_number}: {self.total_amount} ({self.status})>"


class OrderLine(Base):
    """One product on an order.  amount = round2(quantity * rate)."""

    __tablename__ = "order_lines"

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_order_line_product"),
        CheckConstraint("quantity > 0", name="ck_order_line_quantity_positive"),
        CheckConstraint("rate >= 0", name="ck_order_line_rate_non_negative"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    product_name: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)

    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    rate: Mapped[Decimal] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    is_contract_price: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped[Order] = relationship(back_populates="lines")


class PriceChange(Base):
    """
    One entry of an order's price audit trail.

    Append-only; the trail keeps the most recent entries per order and
    evicts the oldest beyond the configured cap.
    """

    __tablename__ = "order_price_changes"

    __table_args__ = (Index("idx_price_change_order_seq", "order_id", "seq"),)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    # Per-order ordering; eviction removes the lowest seq values
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    changed_at: Mapped[datetime] = mapped_column(nullable=False)
    changed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    changed_by_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    product_name: Mapped[str] = mapped_column(String(100), nullable=False)

    old_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    new_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    old_quantity: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    new_quantity: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    old_total: Mapped[Decimal] = mapped_column(nullable=False)
    new_total: Mapped[Decimal] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
