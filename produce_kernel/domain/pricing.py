"""
PricingResolver -- per-customer unit price resolution.

Responsibility:
    Given a customer's pricing profile, a product, the product's latest
    market rate and an optional staff-supplied rate, decide the rate to
    charge and whether it must be persisted as a new contract price.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called once per
    order line by OrderLifecycleManager.

Rules (evaluated in order):
    1. contract + stored contract rate  -> stored rate, contract price;
       the requested rate is ignored.
    2. contract + no stored rate + requested rate -> requested rate,
       contract price, persist as new contract price.
    3. contract + neither -> market rate, fallback flagged.
    4. markup -> requested rate, else round2(market * (1 + markup/100)).
    5. market -> requested rate, else market rate.
    6. no market rate and no requested rate -> 0 (degenerate, not an error).

    A requested rate of zero or less counts as not supplied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Mapping
from uuid import UUID

from produce_kernel.domain.money import ZERO, round2, to_decimal

_HUNDRED = Decimal("100")


class PricingType(str, Enum):
    """Per-customer pricing strategy."""

    MARKET = "market"
    MARKUP = "markup"
    CONTRACT = "contract"


@dataclass(frozen=True)
class CustomerPricingProfile:
    """Pricing-relevant view of a customer.  No ORM dependencies."""

    customer_id: UUID
    pricing_type: PricingType
    markup_percentage: Decimal = ZERO
    contract_prices: Mapping[UUID, Decimal] = field(default_factory=dict)

    def contract_rate_for(self, product_id: UUID) -> Decimal | None:
        return self.contract_prices.get(product_id)

    def has_contract_price(self, product_id: UUID) -> bool:
        return product_id in self.contract_prices


@dataclass(frozen=True)
class PriceResolution:
    """Outcome of resolving one line's rate."""

    rate: Decimal
    is_contract_price: bool = False
    should_persist_as_contract: bool = False
    used_fallback: bool = False


def _supplied(requested_rate: Decimal | None) -> bool:
    return requested_rate is not None and requested_rate > 0


def resolve_price(
    customer: CustomerPricingProfile,
    product_id: UUID,
    market_rate: Decimal | None,
    requested_rate: Decimal | None = None,
) -> PriceResolution:
    """Resolve the rate to charge for one product.

    Args:
        customer: Pricing profile of the ordering customer.
        product_id: Product being priced.
        market_rate: Latest market rate, or None when the product has none.
        requested_rate: Staff-supplied rate, or None.

    Returns:
        PriceResolution with the rate rounded to 2 places.
    """
    market = round2(market_rate) if market_rate is not None else ZERO
    requested = round2(requested_rate) if requested_rate is not None else None

    if customer.pricing_type == PricingType.CONTRACT:
        stored = customer.contract_rate_for(product_id)
        if stored is not None:
            return PriceResolution(rate=round2(stored), is_contract_price=True)
        if _supplied(requested):
            return PriceResolution(
                rate=requested,
                is_contract_price=True,
                should_persist_as_contract=True,
            )
        return PriceResolution(rate=market, used_fallback=True)

    if _supplied(requested):
        return PriceResolution(rate=requested)

    if customer.pricing_type == PricingType.MARKUP:
        return PriceResolution(rate=apply_markup(market, customer.markup_percentage))

    return PriceResolution(rate=market)


def apply_markup(market_rate: Decimal, markup_percentage: Decimal | None) -> Decimal:
    """round2(market_rate * (1 + markup/100))."""
    markup = to_decimal(markup_percentage or 0)
    return round2(to_decimal(market_rate) * (1 + markup / _HUNDRED))


def effective_rate(customer: CustomerPricingProfile, market_rate: Decimal | None) -> Decimal:
    """Rate for bulk repricing: no staff override, no contract save."""
    market = round2(market_rate) if market_rate is not None else ZERO
    if customer.pricing_type == PricingType.MARKUP:
        return apply_markup(market, customer.markup_percentage)
    return market
