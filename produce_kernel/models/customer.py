"""
Module: produce_kernel.models.customer
Responsibility: ORM persistence for wholesale customers, their pricing model,
    their locked contract prices, and the cached credit balance.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - current_credit >= 0 (CHECK constraint; CreditLedger clamps in SQL).
    - One contract price per (customer, product) (uq_contract_price).
      The order paths only ever INSERT contract prices; changing an
      existing one is a customer-management operation.
    - markup_percentage within [0, 200].

Audit relevance:
    current_credit is a cached aggregate.  Every change to it is paired
    with a CreditLedgerEntry in the same transaction, so the balance can be
    recomputed and verified from the ledger.
"""

from decimal import Decimal
from typing import Mapping
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from produce_kernel.db.base import TrackedBase, UUIDString
from produce_kernel.domain.pricing import CustomerPricingProfile, PricingType


class Customer(TrackedBase):
    """
    Wholesale customer.

    Guarantees:
        - pricing_type is one of market, markup, contract.
        - contract_prices holds at most one rate per product.
        - current_credit is never negative.

    Non-goals:
        - Contact details, login links and soft deletion live in the
          customer-management service, not here.
    """

    __tablename__ = "customers"

    __table_args__ = (
        CheckConstraint("current_credit >= 0", name="ck_customer_credit_non_negative"),
        CheckConstraint(
            "markup_percentage >= 0 AND markup_percentage <= 200",
            name="ck_customer_markup_range",
        ),
        Index("idx_customer_name", "name"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    pricing_type: Mapped[PricingType] = mapped_column(
        String(20),
        nullable=False,
        default=PricingType.MARKET,
    )

    markup_percentage: Mapped[Decimal] = mapped_column(
        Numeric(7, 2),
        nullable=False,
        default=Decimal("0"),
    )

    current_credit: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    contract_prices: Mapped[list["CustomerContractPrice"]] = relationship(
        back_populates="customer",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def pricing_profile(
        self, contract_prices: Mapping[UUID, Decimal]
    ) -> CustomerPricingProfile:
        """Pure-domain view used by the pricing resolver.

        ``contract_prices`` comes from a fresh query, not the
        ``contract_prices`` collection, which may predate rows added since
        it was loaded.
        """
        return CustomerPricingProfile(
            customer_id=self.id,
            pricing_type=PricingType(self.pricing_type),
            markup_percentage=self.markup_percentage or Decimal("0"),
            contract_prices=dict(contract_prices),
        )

    def __repr__(self) -> str:
        return f"<Customer {self.name} ({self.pricing_type})>"


class CustomerContractPrice(TrackedBase):
    """A rate locked to a (customer, product) pair."""

    __tablename__ = "customer_contract_prices"

    __table_args__ = (
        UniqueConstraint("customer_id", "product_id", name="uq_contract_price"),
        CheckConstraint("rate >= 0", name="ck_contract_price_rate_non_negative"),
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    rate: Mapped[Decimal] = mapped_column(nullable=False)

    # Order that first established the price, when set from the order path
    source_order_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    customer: Mapped[Customer] = relationship(back_populates="contract_prices")
