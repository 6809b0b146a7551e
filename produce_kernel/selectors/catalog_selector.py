"""
Module: produce_kernel.selectors.catalog_selector
Responsibility: Batch lookup of products, their latest market rates and a
customer's stored contract rates.

Order creation and staff line additions price every requested product in
one pass.  Loading each product and its rate separately would cost two
round trips per line, so both are fetched with one query apiece for the
whole request.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select

from produce_kernel.domain.money import round2
from produce_kernel.models.catalog import MarketRate, Product, ProductUnit
from produce_kernel.models.customer import CustomerContractPrice
from produce_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ProductQuote:
    """A product together with its latest market rate (None if never quoted)."""

    product_id: UUID
    name: str
    unit: ProductUnit
    is_active: bool
    market_rate: Decimal | None

    @property
    def requires_whole_quantity(self) -> bool:
        return self.unit == ProductUnit.PIECE


class CatalogSelector(BaseSelector):
    """Read-only catalog access for pricing."""

    def quotes_for(self, product_ids: Iterable[UUID]) -> dict[UUID, ProductQuote]:
        """
        Products and latest market rates for ``product_ids``.

        Unknown ids are simply absent from the result; the caller decides
        whether that is an error.
        """
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}

        products = self.session.execute(
            select(Product).where(Product.id.in_(ids))
        ).scalars().all()

        rates = self.latest_market_rates(ids)

        return {
            p.id: ProductQuote(
                product_id=p.id,
                name=p.name,
                unit=ProductUnit(p.unit),
                is_active=p.is_active,
                market_rate=rates.get(p.id),
            )
            for p in products
        }

    def latest_market_rates(self, product_ids: Iterable[UUID]) -> dict[UUID, Decimal]:
        """Rate with the greatest effective_date per product."""
        ids = list(product_ids)
        if not ids:
            return {}

        latest = (
            select(
                MarketRate.product_id,
                func.max(MarketRate.effective_date).label("effective_date"),
            )
            .where(MarketRate.product_id.in_(ids))
            .group_by(MarketRate.product_id)
            .subquery()
        )

        rows = self.session.execute(
            select(MarketRate.product_id, MarketRate.rate)
            .join(
                latest,
                (MarketRate.product_id == latest.c.product_id)
                & (MarketRate.effective_date == latest.c.effective_date),
            )
            .order_by(MarketRate.product_id, MarketRate.created_at)
        ).all()

        # Same-timestamp entries: the one recorded last wins.
        return {product_id: round2(rate) for product_id, rate in rows}

    def contract_rates(self, customer_id: UUID) -> dict[UUID, Decimal]:
        """Stored contract rate per product, read from the table each call."""
        rows = self.session.execute(
            select(CustomerContractPrice.product_id, CustomerContractPrice.rate).where(
                CustomerContractPrice.customer_id == customer_id
            )
        ).all()
        return {product_id: round2(rate) for product_id, rate in rows}

    def contract_rate(self, customer_id: UUID, product_id: UUID) -> Decimal | None:
        rate = self.session.execute(
            select(CustomerContractPrice.rate).where(
                CustomerContractPrice.customer_id == customer_id,
                CustomerContractPrice.product_id == product_id,
            )
        ).scalar_one_or_none()
        return round2(rate) if rate is not None else None
