"""Tests for the read-side selectors."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from produce_kernel.domain.commands import LineRequest
from produce_kernel.domain.order_status import OrderStatus
from produce_kernel.models import ProductUnit
from produce_kernel.selectors.catalog_selector import CatalogSelector
from produce_kernel.selectors.order_selector import OrderSelector
from tests.factories import add_market_rate


class TestCatalogSelector:
    def test_quotes_carry_latest_rate(self, session, make_product):
        onion = make_product(market_rate=Decimal("100"))
        add_market_rate(session, onion.id, Decimal("90"), datetime(2024, 1, 10, tzinfo=timezone.utc))
        add_market_rate(session, onion.id, Decimal("130"), datetime(2024, 1, 20, tzinfo=timezone.utc))

        quotes = CatalogSelector(session).quotes_for([onion.id])

        assert quotes[onion.id].market_rate == Decimal("130.00")
        assert quotes[onion.id].name == onion.name

    def test_product_without_rate(self, session, make_product):
        fresh = make_product(market_rate=None)

        quotes = CatalogSelector(session).quotes_for([fresh.id])

        assert quotes[fresh.id].market_rate is None

    def test_unknown_ids_absent(self, session, make_product):
        onion = make_product()

        quotes = CatalogSelector(session).quotes_for([onion.id, uuid4()])

        assert list(quotes) == [onion.id]

    def test_piece_unit_requires_whole_quantity(self, session, make_product):
        coconut = make_product(unit=ProductUnit.PIECE)
        onion = make_product(unit=ProductUnit.KG)

        quotes = CatalogSelector(session).quotes_for([coconut.id, onion.id])

        assert quotes[coconut.id].requires_whole_quantity
        assert not quotes[onion.id].requires_whole_quantity

    def test_latest_rates_for_many_products(self, session, make_product):
        onion = make_product(market_rate=Decimal("10"))
        garlic = make_product(market_rate=Decimal("20"))

        rates = CatalogSelector(session).latest_market_rates([onion.id, garlic.id])

        assert rates == {onion.id: Decimal("10.00"), garlic.id: Decimal("20.00")}


class TestOrderSelector:
    def test_lookups(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        onion = make_product()
        order = manager.create(
            customer.id, [LineRequest(onion.id, Decimal("2"))], actor, idempotency_key="k-1"
        ).order
        selector = OrderSelector(session)

        by_id = selector.get(order.id)
        assert by_id.order_number == order.order_number
        assert by_id.status == OrderStatus.PENDING
        assert by_id.unpaid_amount == Decimal("200.00")
        assert [line.product_id for line in by_id.lines] == [onion.id]
        assert selector.by_number(order.order_number).id == order.id
        assert selector.by_idempotency_key("k-1").id == order.id

    def test_missing(self, session):
        selector = OrderSelector(session)

        assert selector.get(uuid4()) is None
        assert selector.by_number("ORD00000000") is None
        assert selector.by_idempotency_key("nope") is None

    def test_credit_ledger_in_order(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        onion = make_product()
        order = manager.create(customer.id, [LineRequest(onion.id, Decimal("1"))], actor).order
        manager.record_payment(order.id, Decimal("40"), actor)

        entries = OrderSelector(session).credit_ledger(customer.id)

        assert [e.entry_seq for e in entries] == [1, 2]
        assert [e.balance_after for e in entries] == [Decimal("100.00"), Decimal("60.00")]
