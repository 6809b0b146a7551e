"""
Credit movement across payment, repricing, cancellation and reconciliation.

The scenario tests walk one order through its whole life and check the
customer's outstanding credit after every step.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from produce_kernel.domain.commands import Actor, LineEdit, LineRequest, StaffPriceEdit
from produce_kernel.domain.order_status import OrderStatus, PaymentStatus
from produce_kernel.exceptions import (
    CustomerMismatchError,
    InvalidPaymentError,
    InvalidStatusTransitionError,
    OrderAlreadyCancelledError,
    OrderCancelledError,
    OrderNotDeliveredError,
    OrderNotFoundError,
)
from produce_kernel.models import CreditEntryType, Customer
from produce_kernel.selectors.order_selector import OrderSelector


def credit_of(session, customer_id):
    return session.get(Customer, customer_id).current_credit


class TestOrderLifeScenario:
    def test_create_pay_reprice_cancel(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        onion = make_product(market_rate=Decimal("100"))

        order = manager.create(customer.id, [LineRequest(onion.id, Decimal("10"))], actor).order
        assert order.total_amount == Decimal("1000.00")
        assert credit_of(session, customer.id) == Decimal("1000.00")

        manager.record_payment(order.id, Decimal("400"), actor)
        assert order.payment_status == PaymentStatus.PARTIAL
        assert credit_of(session, customer.id) == Decimal("600.00")

        manager.update_prices(
            order.id, [LineEdit(onion.id, rate=Decimal("150"))], StaffPriceEdit(actor=actor)
        )
        assert order.total_amount == Decimal("1500.00")
        assert credit_of(session, customer.id) == Decimal("1100.00")

        manager.cancel(order.id, actor)
        assert order.status == OrderStatus.CANCELLED
        assert credit_of(session, customer.id) == Decimal("0.00")

    def test_cancel_restores_only_down_to_zero(self, session, manager, ledger, actor, make_customer, make_product):
        customer = make_customer()
        onion = make_product(market_rate=Decimal("100"))
        ledger.record_adjustment(customer.id, Decimal("100"), "opening balance", actor.actor_id)

        order = manager.create(customer.id, [LineRequest(onion.id, Decimal("10"))], actor).order
        assert credit_of(session, customer.id) == Decimal("1100.00")

        manager.cancel(order.id, actor)

        assert credit_of(session, customer.id) == Decimal("100.00")

    def test_ledger_replays_to_cached_balance(self, session, manager, ledger, actor, make_customer, make_product):
        customer = make_customer()
        onion = make_product(market_rate=Decimal("100"))
        order = manager.create(customer.id, [LineRequest(onion.id, Decimal("10"))], actor).order
        manager.record_payment(order.id, Decimal("250"), actor)
        manager.cancel(order.id, actor)

        check = ledger.verify_balance(customer.id)

        assert check.is_consistent
        entries = OrderSelector(session).credit_ledger(customer.id)
        assert [e.entry_type for e in entries] == [
            CreditEntryType.ORDER_CREATED,
            CreditEntryType.PAYMENT,
            CreditEntryType.CANCELLATION_RESTORE,
        ]


class TestRecordPayment:
    def test_full_payment(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("10"))], actor).order

        manager.record_payment(order.id, Decimal("1000"), actor)

        assert order.payment_status == PaymentStatus.PAID
        assert credit_of(session, customer.id) == Decimal("0.00")

    def test_lowering_payment_charges_credit_back(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("10"))], actor).order
        manager.record_payment(order.id, Decimal("600"), actor)

        manager.record_payment(order.id, Decimal("200"), actor)

        assert order.paid_amount == Decimal("200.00")
        assert credit_of(session, customer.id) == Decimal("800.00")

    def test_same_amount_is_noop(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("10"))], actor).order
        manager.record_payment(order.id, Decimal("600"), actor)
        version = order.version

        manager.record_payment(order.id, Decimal("600.00"), actor)

        assert order.version == version
        assert len(OrderSelector(session).credit_ledger(customer.id)) == 2

    @pytest.mark.parametrize("amount", ["-1", "1000.01"])
    def test_out_of_range(self, manager, actor, make_customer, make_product, amount):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("10"))], actor).order

        with pytest.raises(InvalidPaymentError):
            manager.record_payment(order.id, Decimal(amount), actor)

    def test_cancelled_order(self, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("1"))], actor).order
        manager.cancel(order.id, actor)

        with pytest.raises(OrderCancelledError):
            manager.record_payment(order.id, Decimal("1"), actor)

    def test_unknown_order(self, manager, actor):
        with pytest.raises(OrderNotFoundError):
            manager.record_payment(uuid4(), Decimal("1"), actor)


class TestCancellation:
    def test_cancel_twice(self, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("1"))], actor).order
        manager.cancel(order.id, actor)

        with pytest.raises(OrderAlreadyCancelledError):
            manager.cancel(order.id, actor)

    def test_cancel_through_transition(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("10"))], actor).order

        manager.transition_status(order.id, OrderStatus.CANCELLED, actor)

        assert order.cancelled_by_id == actor.actor_id
        assert credit_of(session, customer.id) == Decimal("0.00")

    def test_delivered_order_cannot_be_cancelled(self, session, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("10"))], actor).order
        manager.transition_status(order.id, OrderStatus.CONFIRMED, actor)
        manager.transition_status(order.id, OrderStatus.DELIVERED, actor)

        with pytest.raises(InvalidStatusTransitionError):
            manager.cancel(order.id, actor)
        assert credit_of(session, customer.id) == Decimal("1000.00")

    def test_customer_cancels_own_order(self, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("1"))], actor).order

        manager.cancel(order.id, Actor(uuid4(), customer_id=customer.id))

        assert order.status == OrderStatus.CANCELLED

    def test_customer_cannot_cancel_others(self, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("1"))], actor).order

        with pytest.raises(CustomerMismatchError):
            manager.cancel(order.id, Actor(uuid4(), customer_id=uuid4()))


class TestReconciliation:
    def test_requires_delivery(self, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("1"))], actor).order

        with pytest.raises(OrderNotDeliveredError):
            manager.mark_reconciled(order.id, actor)

    def test_reconcile_is_idempotent(self, manager, actor, make_customer, make_product):
        customer = make_customer()
        order = manager.create(customer.id, [LineRequest(make_product().id, Decimal("1"))], actor).order
        manager.transition_status(order.id, OrderStatus.CONFIRMED, actor)
        manager.transition_status(order.id, OrderStatus.DELIVERED, actor)

        manager.mark_reconciled(order.id, actor)
        stamped = order.reconciled_at
        manager.mark_reconciled(order.id, actor)

        assert order.reconciled_at == stamped
        assert order.reconciled_by_id == actor.actor_id
