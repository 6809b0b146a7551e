"""
Property tests for order totals and credit arithmetic.

Totals are always the rounded sum of rounded line amounts, whatever mix of
quantities, rates and pricing models goes in.
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from produce_kernel.domain.commands import LineRequest
from produce_kernel.domain.money import line_amount, round2, sum_amounts, to_cents
from produce_kernel.domain.pricing import (
    CustomerPricingProfile,
    PricingType,
    resolve_price,
)
from produce_kernel.models import Customer

quantities = st.decimals(
    min_value=Decimal("0.001"), max_value=Decimal("10000"), places=3
)
rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("99999"), places=2)
markups = st.decimals(min_value=Decimal("0"), max_value=Decimal("200"), places=2)


class TestLineAmountProperties:
    @given(quantity=quantities, rate=rates)
    def test_line_amount_has_two_places(self, quantity, rate):
        amount = line_amount(quantity, rate)
        assert amount == amount.quantize(Decimal("0.01"))
        assert abs(amount - quantity * rate) <= Decimal("0.005")

    @given(lines=st.lists(st.tuples(quantities, rates), min_size=1, max_size=20))
    def test_total_is_sum_of_rounded_lines(self, lines):
        amounts = [line_amount(q, r) for q, r in lines]
        total = sum_amounts(amounts)
        assert to_cents(total) == sum(to_cents(a) for a in amounts)

    @given(market=rates, markup=markups, quantity=quantities)
    def test_markup_never_below_market(self, market, markup, quantity):
        customer = CustomerPricingProfile(
            customer_id=uuid4(),
            pricing_type=PricingType.MARKUP,
            markup_percentage=markup,
        )
        resolution = resolve_price(customer, uuid4(), market)
        assert resolution.rate >= round2(market)
        assert line_amount(quantity, resolution.rate) >= Decimal("0")


class TestPersistedTotals:
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        lines=st.lists(
            st.tuples(
                st.decimals(min_value=Decimal("0.001"), max_value=Decimal("500"), places=3),
                st.decimals(min_value=Decimal("0.01"), max_value=Decimal("5000"), places=2),
            ),
            min_size=1,
            max_size=6,
        )
    )
    def test_created_order_total_matches_lines(
        self, session, manager, actor, make_customer, make_product, lines
    ):
        customer = make_customer()
        requests = [
            LineRequest(make_product(market_rate=rate).id, quantity)
            for quantity, rate in lines
        ]

        creation = manager.create(customer.id, requests, actor)

        order = creation.order
        assert order.total_amount == sum_amounts(line.amount for line in order.lines)
        assert order.total_amount == sum_amounts(line_amount(q, r) for q, r in lines)
        credit = session.get(Customer, customer.id).current_credit
        assert round2(credit) == order.total_amount
