"""
Module: produce_kernel.models.catalog
Responsibility: ORM persistence for products and their market rates.
Architecture position: Kernel > Models.  May import from db/base.py only.

The order core reads these tables; maintaining them (catalog edits, daily
market-rate entry) belongs to other services.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from produce_kernel.db.base import TrackedBase, UUIDString


class ProductUnit(str, Enum):
    QUINTAL = "quintal"
    BAG = "bag"
    KG = "kg"
    PIECE = "piece"
    TON = "ton"


class Product(TrackedBase):
    """A sellable produce item.  Piece goods only take whole quantities."""

    __tablename__ = "products"

    __table_args__ = (Index("idx_product_active", "is_active"),)

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    unit: Mapped[ProductUnit] = mapped_column(
        String(20),
        nullable=False,
        default=ProductUnit.QUINTAL,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def requires_whole_quantity(self) -> bool:
        return self.unit == ProductUnit.PIECE

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.unit})>"


class MarketRate(TrackedBase):
    """
    A market rate observation for a product.

    The current rate is the row with the latest effective_date; older rows
    are kept as history.
    """

    __tablename__ = "market_rates"

    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_market_rate_non_negative"),
        Index("idx_market_rate_product_date", "product_id", "effective_date"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    rate: Mapped[Decimal] = mapped_column(nullable=False)

    effective_date: Mapped[datetime] = mapped_column(nullable=False)

    source: Mapped[str | None] = mapped_column(String(200), nullable=True)
