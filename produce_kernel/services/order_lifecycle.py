"""
OrderLifecycleManager -- create, reprice, pay, cancel and reconcile orders.

Responsibility:
    Orchestrates pricing, order numbering, the status machine and the
    credit ledger so that every order event leaves the customer's balance
    equal to the unpaid obligations of their live orders.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only; the command façade
    in ``produce_services.order_commands`` owns the transaction, so an order
    row, its new contract prices and its credit movement commit together.

Invariants enforced:
    - order.total_amount == rounded sum of line amounts after every write.
    - 0 <= paid_amount <= total_amount.
    - Idempotent creation: a repeated idempotency key returns the first
      order and touches nothing.  The unique constraint decides races; the
      losing insert is undone through a savepoint, which also returns its
      order number.
    - Contract prices are only ever inserted from this path, never
      overwritten.
    - Cancellation restores the unpaid amount exactly once (status CAS).
    - Reconciled orders are never repriced.

Failure modes:
    - NotFoundError / InvalidInputError / ForbiddenError subclasses for
      business-rule violations; nothing has been flushed for the operation
      when they are raised from validation.
    - OptimisticLockError when the order changed since it was loaded.
    - OrderStatusConflictError from the status CAS.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from produce_kernel.domain.clock import Clock
from produce_kernel.domain.commands import (
    Actor,
    CustomerPriceEdit,
    LineEdit,
    LineRequest,
    PriceEditCommand,
)
from produce_kernel.domain.money import (
    ZERO,
    line_amount,
    round2,
    sum_amounts,
    to_decimal,
)
from produce_kernel.domain.order_status import (
    OrderStatus,
    derive_payment_status,
)
from produce_kernel.domain.pricing import (
    CustomerPricingProfile,
    PriceResolution,
    PricingType,
    resolve_price,
)
from produce_kernel.exceptions import (
    ContractPriceLockedError,
    ContractProductNotAllowedError,
    CustomerMismatchError,
    CustomerNotFoundError,
    DuplicateIdempotencyKeyError,
    DuplicateLineError,
    EmptyOrderError,
    InactiveCustomerError,
    InactiveProductError,
    InvalidPaymentError,
    InvalidQuantityError,
    InvalidRateError,
    LineAdditionNotAllowedError,
    OptimisticLockError,
    OrderAlreadyCancelledError,
    OrderCancelledError,
    OrderNotDeliveredError,
    OrderNotFoundError,
    OrderReconciledError,
    ProductNotFoundError,
    QuantityChangeNotAllowedError,
    RateChangeNotAllowedError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.credit_ledger import CreditEntryType
from produce_kernel.models.customer import Customer, CustomerContractPrice
from produce_kernel.models.order import Order, OrderLine, PriceChange
from produce_kernel.selectors.catalog_selector import CatalogSelector, ProductQuote
from produce_kernel.services.base import BaseService
from produce_kernel.services.credit_ledger import CreditLedger
from produce_kernel.services.sequence_service import (
    SequenceService,
    price_change_counter_name,
)
from produce_kernel.services.status_service import OrderStatusService

logger = get_logger("services.order_lifecycle")

FALLBACK_WARNING = (
    "Some products used market rate fallback because contract prices were not set"
)

_QUANTITY_STEP = Decimal("0.001")


@dataclass(frozen=True)
class NewContractPrice:
    product_id: UUID
    product_name: str
    rate: Decimal


@dataclass(frozen=True)
class OrderCreation:
    """Outcome of ``create``."""

    order: Order
    idempotent: bool = False
    warnings: tuple[str, ...] = ()
    new_contract_prices: tuple[NewContractPrice, ...] = ()


@dataclass(frozen=True)
class PriceUpdate:
    """Outcome of ``update_prices``."""

    order: Order
    warnings: tuple[str, ...] = ()
    new_contract_prices: tuple[NewContractPrice, ...] = ()


@dataclass(frozen=True)
class _PricedLine:
    quote: ProductQuote
    quantity: Decimal
    resolution: PriceResolution
    amount: Decimal


@dataclass
class _LineChange:
    product_id: UUID
    product_name: str
    old_rate: Decimal | None
    new_rate: Decimal | None
    old_quantity: Decimal | None
    new_quantity: Decimal | None
    old_amount: Decimal = ZERO
    new_amount: Decimal = ZERO


@dataclass
class _EditState:
    changes: list[_LineChange] = field(default_factory=list)
    added: list[_PricedLine] = field(default_factory=list)
    next_position: int = 0
    used_fallback: bool = False


class OrderLifecycleManager(BaseService):
    """
    The order lifecycle engine.

    Contract:
        Every public method validates, mutates and flushes within the
        caller's transaction and returns the (refreshed) ORM order.

    Non-goals:
        - Does NOT commit, retry, or emit audit records.
        - Does NOT assign delivery batches; ``batch_id`` is passed through.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        order_prefix: str = "ORD",
        sequence_width: int = 4,
        max_line_quantity: Decimal = Decimal("10000"),
        price_audit_limit: int = 100,
    ):
        super().__init__(session, clock)
        self._max_line_quantity = to_decimal(max_line_quantity)
        self._price_audit_limit = price_audit_limit
        self._sequences = SequenceService(session, order_prefix, sequence_width)
        self._ledger = CreditLedger(session, self.clock)
        self._status = OrderStatusService(session, self.clock)
        self._catalog = CatalogSelector(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        customer_id: UUID,
        lines: Sequence[LineRequest],
        actor: Actor,
        idempotency_key: str | None = None,
        delivery_address: str | None = None,
        notes: str | None = None,
        batch_id: UUID | None = None,
    ) -> OrderCreation:
        """
        Price and persist a new order, then charge its total to credit.

        Returns:
            OrderCreation.  ``idempotent`` is True when ``idempotency_key``
            matched an existing order, which is returned unchanged even if
            this request differs from the original.
        """
        if idempotency_key:
            existing = self._find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "order_idempotent_hit",
                    extra={
                        "idempotency_key": idempotency_key,
                        "order_number": existing.order_number,
                    },
                )
                return OrderCreation(order=existing, idempotent=True)

        customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(str(customer_id))
        if not customer.is_active:
            raise InactiveCustomerError(str(customer_id))
        if actor.is_customer and actor.customer_id != customer.id:
            raise CustomerMismatchError(str(actor.customer_id), str(customer.id))

        if not lines:
            raise EmptyOrderError()
        product_ids = self._distinct_product_ids(line.product_id for line in lines)

        profile = customer.pricing_profile(self._catalog.contract_rates(customer.id))
        if actor.is_customer and profile.pricing_type == PricingType.CONTRACT:
            missing = [pid for pid in product_ids if not profile.has_contract_price(pid)]
            if missing:
                raise ContractProductNotAllowedError(
                    str(customer.id), [str(pid) for pid in missing]
                )

        quotes = self._catalog.quotes_for(product_ids)
        priced = [self._price_line(profile, quotes, request) for request in lines]

        total = sum_amounts(p.amount for p in priced)
        used_fallback = any(p.resolution.used_fallback for p in priced)

        order, created = self._insert_order(
            customer=customer,
            priced=priced,
            total=total,
            used_fallback=used_fallback,
            actor=actor,
            idempotency_key=idempotency_key,
            delivery_address=delivery_address,
            notes=notes,
            batch_id=batch_id,
        )
        if not created:
            return OrderCreation(order=order, idempotent=True)

        warnings: list[str] = []
        if used_fallback:
            warnings.append(FALLBACK_WARNING)

        saved, kept = self._persist_contract_prices(
            customer.id, priced, order, actor, warnings
        )
        if kept:
            self._apply_stored_contract_rates(order, kept)
            order.total_amount = sum_amounts(line.amount for line in order.lines)
            self._flush_order(order)
            total = order.total_amount

        self._ledger.apply_delta(
            customer.id,
            total,
            CreditEntryType.ORDER_CREATED,
            actor.actor_id,
            order_id=order.id,
            order_number=order.order_number,
        )

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "customer_id": str(customer.id),
                "total_amount": total,
                "line_count": len(priced),
                "used_pricing_fallback": used_fallback,
                "new_contract_prices": len(saved),
            },
        )

        return OrderCreation(
            order=order,
            idempotent=False,
            warnings=tuple(warnings),
            new_contract_prices=tuple(saved),
        )

    def _insert_order(
        self,
        *,
        customer: Customer,
        priced: list[_PricedLine],
        total: Decimal,
        used_fallback: bool,
        actor: Actor,
        idempotency_key: str | None,
        delivery_address: str | None,
        notes: str | None,
        batch_id: UUID | None,
    ) -> tuple[Order, bool]:
        # Number allocation and insert share one savepoint so a lost
        # idempotency race hands its number back.
        savepoint = self.session.begin_nested()
        try:
            order_number = self._sequences.next_order_number(self.clock.now())
            order = Order(
                order_number=order_number,
                customer_id=customer.id,
                total_amount=total,
                status=OrderStatus.PENDING.value,
                payment_status=derive_payment_status(ZERO, total).value,
                paid_amount=ZERO,
                idempotency_key=idempotency_key,
                batch_id=batch_id,
                delivery_address=delivery_address,
                notes=notes,
                used_pricing_fallback=used_fallback,
                created_by_id=actor.actor_id,
                lines=[
                    OrderLine(
                        position=position,
                        product_id=p.quote.product_id,
                        product_name=p.quote.name,
                        quantity=p.quantity,
                        unit=p.quote.unit.value,
                        rate=p.resolution.rate,
                        amount=p.amount,
                        is_contract_price=p.resolution.is_contract_price,
                    )
                    for position, p in enumerate(priced)
                ],
            )
            self.session.add(order)
            self.session.flush()
            savepoint.commit()
            return order, True
        except IntegrityError:
            savepoint.rollback()
            if not idempotency_key:
                raise
            existing = self._find_by_idempotency_key(idempotency_key)
            if existing is None:
                raise DuplicateIdempotencyKeyError(idempotency_key)
            logger.info(
                "order_idempotent_race",
                extra={
                    "idempotency_key": idempotency_key,
                    "order_number": existing.order_number,
                },
            )
            return existing, False

    def _persist_contract_prices(
        self,
        customer_id: UUID,
        priced: list[_PricedLine],
        order: Order,
        actor: Actor,
        warnings: list[str],
    ) -> tuple[list[NewContractPrice], dict[UUID, Decimal]]:
        """
        Save requested rates as contract prices.

        Returns:
            The prices saved, and the stored rate for every product whose
            contract price another writer set first.  Lines for those
            products must be charged the stored rate.
        """
        candidates = [p for p in priced if p.resolution.should_persist_as_contract]
        if not candidates:
            return [], {}

        # Re-read the pricing type; it may have changed since the customer
        # row was loaded.
        pricing_type = self.session.execute(
            select(Customer.pricing_type).where(Customer.id == customer_id)
        ).scalar_one()
        if PricingType(pricing_type) != PricingType.CONTRACT:
            logger.warning(
                "contract_price_save_skipped",
                extra={"customer_id": str(customer_id), "pricing_type": pricing_type},
            )
            warnings.append(
                "Contract prices were not saved because the customer is no longer "
                "on contract pricing"
            )
            return [], {}

        saved: list[NewContractPrice] = []
        kept: dict[UUID, Decimal] = {}
        for p in candidates:
            stored = self._insert_contract_price(customer_id, p, order, actor)
            if stored is None:
                saved.append(
                    NewContractPrice(
                        product_id=p.quote.product_id,
                        product_name=p.quote.name,
                        rate=p.resolution.rate,
                    )
                )
                continue
            kept[p.quote.product_id] = stored
            warnings.append(
                f'Contract price for "{p.quote.name}" was already set; '
                f"the stored rate {stored} was used"
            )
        return saved, kept

    def _insert_contract_price(
        self,
        customer_id: UUID,
        priced: _PricedLine,
        order: Order,
        actor: Actor,
    ) -> Decimal | None:
        """Insert one contract price.  Returns the stored rate if one already exists."""
        stored = self._catalog.contract_rate(customer_id, priced.quote.product_id)
        if stored is not None:
            return stored

        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                CustomerContractPrice(
                    customer_id=customer_id,
                    product_id=priced.quote.product_id,
                    rate=priced.resolution.rate,
                    source_order_number=order.order_number,
                    created_by_id=actor.actor_id,
                )
            )
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # A concurrent order set it first; never overwrite.
            savepoint.rollback()
            stored = self._catalog.contract_rate(customer_id, priced.quote.product_id)
            if stored is None:
                raise
            logger.info(
                "contract_price_already_set",
                extra={
                    "customer_id": str(customer_id),
                    "product_id": str(priced.quote.product_id),
                    "stored_rate": stored,
                },
            )
            return stored

        logger.info(
            "contract_price_saved",
            extra={
                "customer_id": str(customer_id),
                "product_id": str(priced.quote.product_id),
                "rate": priced.resolution.rate,
                "order_number": order.order_number,
            },
        )
        return None

    def _apply_stored_contract_rates(
        self,
        order: Order,
        kept: dict[UUID, Decimal],
        changes: list[_LineChange] | None = None,
    ) -> None:
        for product_id, rate in kept.items():
            line = order.line_for(product_id)
            line.rate = rate
            line.amount = line_amount(line.quantity, rate)
            line.is_contract_price = True
            for change in changes or ():
                if change.product_id == product_id:
                    change.new_rate = rate
                    change.new_amount = line.amount
            logger.warning(
                "contract_rate_repriced",
                extra={
                    "order_id": str(order.id),
                    "product_id": str(product_id),
                    "rate": rate,
                },
            )

    # ------------------------------------------------------------------
    # Price edits
    # ------------------------------------------------------------------

    def update_prices(
        self,
        order_id: UUID,
        lines: Sequence[LineEdit],
        command: PriceEditCommand,
    ) -> PriceUpdate:
        """
        Apply a price edit and move credit by ``new_total - old_total``.

        Existing lines may change rate (staff only, never contract-priced
        lines) or be removed with quantity 0; their quantity is otherwise
        immutable.  Products not on the order may be added: by staff freely,
        by a contract customer only where a contract price exists.

        Returns:
            PriceUpdate carrying the order, any fallback or contract-price
            warnings and the contract prices saved for added lines.
        """
        actor = command.actor
        is_customer_edit = isinstance(command, CustomerPriceEdit)

        order = self._load_order(order_id)
        self._check_expected_version(order, command.expected_version)
        if order.is_cancelled:
            raise OrderCancelledError(str(order.id), "update_prices")
        if order.is_reconciled:
            raise OrderReconciledError(str(order.id))
        if is_customer_edit and actor.customer_id != order.customer_id:
            raise CustomerMismatchError(str(actor.customer_id), str(order.customer_id))

        self._distinct_product_ids(edit.product_id for edit in lines)

        customer = self.session.get(Customer, order.customer_id)
        profile = customer.pricing_profile(self._catalog.contract_rates(customer.id))

        additions = [
            edit.product_id
            for edit in lines
            if order.line_for(edit.product_id) is None and not _is_removal(edit)
        ]
        quotes = self._catalog.quotes_for(additions) if additions else {}

        state = _EditState(
            next_position=max((line.position for line in order.lines), default=-1) + 1
        )
        for edit in lines:
            line = order.line_for(edit.product_id)
            if line is None:
                self._add_line(order, edit, profile, quotes, is_customer_edit, state)
            else:
                self._edit_line(order, line, edit, is_customer_edit, state)

        if not state.changes:
            return PriceUpdate(order=order)

        if not order.lines:
            raise EmptyOrderError("An order must keep at least one line")

        warnings: list[str] = []
        if state.used_fallback:
            order.used_pricing_fallback = True
            warnings.append(FALLBACK_WARNING)

        saved: list[NewContractPrice] = []
        if state.added:
            # Line edits must reach the database before the contract
            # savepoints, whose rollback would discard them.
            self._flush_order(order)
            saved, kept = self._persist_contract_prices(
                order.customer_id, state.added, order, actor, warnings
            )
            if kept:
                self._apply_stored_contract_rates(order, kept, state.changes)

        old_total = round2(order.total_amount)
        new_total = sum_amounts(line.amount for line in order.lines)
        paid = round2(order.paid_amount)
        if new_total < paid:
            raise InvalidPaymentError(str(order.id), str(paid), str(new_total))

        order.total_amount = new_total
        order.payment_status = derive_payment_status(paid, new_total).value
        order.updated_at = self.clock.now()
        order.updated_by_id = actor.actor_id
        self._flush_order(order)

        self._append_price_changes(order, state.changes, actor, command.reason, old_total)

        self._ledger.apply_delta(
            order.customer_id,
            new_total - old_total,
            CreditEntryType.PRICE_ADJUSTMENT,
            actor.actor_id,
            order_id=order.id,
            order_number=order.order_number,
        )

        logger.info(
            "order_prices_updated",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "old_total": old_total,
                "new_total": new_total,
                "change_count": len(state.changes),
                "edit_kind": "customer" if is_customer_edit else "staff",
                "used_pricing_fallback": state.used_fallback,
                "new_contract_prices": len(saved),
            },
        )
        return PriceUpdate(
            order=order,
            warnings=tuple(warnings),
            new_contract_prices=tuple(saved),
        )

    def _add_line(
        self,
        order: Order,
        edit: LineEdit,
        profile: CustomerPricingProfile,
        quotes: dict[UUID, ProductQuote],
        is_customer_edit: bool,
        state: _EditState,
    ) -> None:
        if _is_removal(edit):
            return
        if is_customer_edit and not (
            profile.pricing_type == PricingType.CONTRACT
            and profile.has_contract_price(edit.product_id)
        ):
            raise LineAdditionNotAllowedError(str(order.id), str(edit.product_id))
        if edit.quantity is None:
            raise InvalidQuantityError(
                str(edit.product_id), "None", "quantity is required for a new line"
            )

        requested_rate = None if is_customer_edit else edit.rate
        priced = self._price_line(
            profile,
            quotes,
            LineRequest(edit.product_id, edit.quantity, requested_rate),
        )
        order.lines.append(
            OrderLine(
                position=state.next_position,
                product_id=priced.quote.product_id,
                product_name=priced.quote.name,
                quantity=priced.quantity,
                unit=priced.quote.unit.value,
                rate=priced.resolution.rate,
                amount=priced.amount,
                is_contract_price=priced.resolution.is_contract_price,
            )
        )
        state.next_position += 1
        state.added.append(priced)
        if priced.resolution.used_fallback:
            state.used_fallback = True
        state.changes.append(
            _LineChange(
                product_id=priced.quote.product_id,
                product_name=priced.quote.name,
                old_rate=None,
                new_rate=priced.resolution.rate,
                old_quantity=None,
                new_quantity=priced.quantity,
                new_amount=priced.amount,
            )
        )

    def _edit_line(
        self,
        order: Order,
        line: OrderLine,
        edit: LineEdit,
        is_customer_edit: bool,
        state: _EditState,
    ) -> None:
        if edit.quantity is not None:
            quantity = self._parse_quantity(edit.product_id, edit.quantity)
            if quantity == 0:
                order.lines.remove(line)
                state.changes.append(
                    _LineChange(
                        product_id=line.product_id,
                        product_name=line.product_name,
                        old_rate=line.rate,
                        new_rate=None,
                        old_quantity=line.quantity,
                        new_quantity=Decimal("0"),
                        old_amount=line.amount,
                    )
                )
                return
            if quantity != line.quantity:
                raise QuantityChangeNotAllowedError(
                    str(order.id), str(line.product_id), str(line.quantity), str(quantity)
                )

        if edit.rate is None:
            return
        new_rate = self._parse_rate(edit.product_id, edit.rate)
        if new_rate == round2(line.rate):
            return
        if line.is_contract_price:
            raise ContractPriceLockedError(str(order.id), str(line.product_id))
        if is_customer_edit:
            raise RateChangeNotAllowedError(str(order.id), str(line.product_id))

        old_rate, old_amount = line.rate, line.amount
        line.rate = new_rate
        line.amount = line_amount(line.quantity, new_rate)
        state.changes.append(
            _LineChange(
                product_id=line.product_id,
                product_name=line.product_name,
                old_rate=old_rate,
                new_rate=new_rate,
                old_quantity=line.quantity,
                new_quantity=line.quantity,
                old_amount=old_amount,
                new_amount=line.amount,
            )
        )

    def _append_price_changes(
        self,
        order: Order,
        changes: list[_LineChange],
        actor: Actor,
        reason: str | None,
        old_total: Decimal,
    ) -> None:
        now = self.clock.now()
        running = old_total
        counter = price_change_counter_name(order.id)
        for change in changes:
            after = round2(running - change.old_amount + change.new_amount)
            self.session.add(
                PriceChange(
                    order_id=order.id,
                    seq=self._sequences.next_value(counter),
                    changed_at=now,
                    changed_by_id=actor.actor_id,
                    changed_by_name=actor.name,
                    product_id=change.product_id,
                    product_name=change.product_name,
                    old_rate=change.old_rate,
                    new_rate=change.new_rate,
                    old_quantity=change.old_quantity,
                    new_quantity=change.new_quantity,
                    old_total=running,
                    new_total=after,
                    reason=reason,
                )
            )
            running = after
        self.session.flush()
        self._evict_old_price_changes(order.id)

    def _evict_old_price_changes(self, order_id: UUID) -> None:
        cutoff = self.session.execute(
            select(PriceChange.seq)
            .where(PriceChange.order_id == order_id)
            .order_by(PriceChange.seq.desc())
            .offset(self._price_audit_limit)
            .limit(1)
        ).scalar_one_or_none()
        if cutoff is None:
            return
        result = self.session.execute(
            delete(PriceChange)
            .where(PriceChange.order_id == order_id, PriceChange.seq <= cutoff)
            .execution_options(synchronize_session=False)
        )
        logger.debug(
            "price_changes_evicted",
            extra={"order_id": str(order_id), "evicted": result.rowcount},
        )

    # ------------------------------------------------------------------
    # Payment, status, cancellation, reconciliation
    # ------------------------------------------------------------------

    def record_payment(
        self,
        order_id: UUID,
        paid_amount: Decimal,
        actor: Actor,
        expected_version: int | None = None,
    ) -> Order:
        """Set the amount paid so far; credit moves by the difference."""
        order = self._load_order(order_id)
        self._check_expected_version(order, expected_version)
        if order.is_cancelled:
            raise OrderCancelledError(str(order.id), "record_payment")

        total = round2(order.total_amount)
        try:
            paid = round2(paid_amount)
        except ValueError:
            raise InvalidPaymentError(str(order.id), str(paid_amount), str(total)) from None
        if paid < ZERO or paid > total:
            raise InvalidPaymentError(str(order.id), str(paid), str(total))

        old_paid = round2(order.paid_amount)
        if paid == old_paid:
            return order

        order.paid_amount = paid
        order.payment_status = derive_payment_status(paid, total).value
        order.updated_at = self.clock.now()
        order.updated_by_id = actor.actor_id
        self._flush_order(order)

        self._ledger.apply_delta(
            order.customer_id,
            -(paid - old_paid),
            CreditEntryType.PAYMENT,
            actor.actor_id,
            order_id=order.id,
            order_number=order.order_number,
        )

        logger.info(
            "payment_recorded",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "old_paid": old_paid,
                "new_paid": paid,
                "payment_status": order.payment_status,
            },
        )
        return order

    def transition_status(
        self,
        order_id: UUID,
        new_status: OrderStatus,
        actor: Actor,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        """Move the order along the lifecycle.  Cancellation goes through ``cancel``."""
        new_status = OrderStatus(new_status)
        if new_status == OrderStatus.CANCELLED:
            return self.cancel(order_id, actor, expected_status)

        order = self._load_order(order_id)
        self._status.transition(order, new_status, actor.actor_id, expected_status)
        return order

    def cancel(
        self,
        order_id: UUID,
        actor: Actor,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        """Cancel and restore the unpaid amount to the customer's credit."""
        order = self._load_order(order_id)
        if order.is_cancelled:
            raise OrderAlreadyCancelledError(str(order.id))
        if actor.is_customer and actor.customer_id != order.customer_id:
            raise CustomerMismatchError(str(actor.customer_id), str(order.customer_id))

        outstanding = round2(order.total_amount - order.paid_amount)
        self._status.transition(order, OrderStatus.CANCELLED, actor.actor_id, expected_status)

        self._ledger.apply_delta(
            order.customer_id,
            -outstanding,
            CreditEntryType.CANCELLATION_RESTORE,
            actor.actor_id,
            order_id=order.id,
            order_number=order.order_number,
        )

        logger.info(
            "order_cancelled",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "restored_amount": outstanding,
            },
        )
        return order

    def mark_reconciled(self, order_id: UUID, actor: Actor) -> Order:
        """Lock a delivered order's pricing for good.  Repeating is a no-op."""
        order = self._load_order(order_id)
        if order.is_reconciled:
            return order
        if OrderStatus(order.status) != OrderStatus.DELIVERED:
            raise OrderNotDeliveredError(str(order.id), order.status)

        now = self.clock.now()
        order.reconciled_at = now
        order.reconciled_by_id = actor.actor_id
        order.updated_at = now
        order.updated_by_id = actor.actor_id
        self._flush_order(order)

        logger.info(
            "order_reconciled",
            extra={"order_id": str(order.id), "order_number": order.order_number},
        )
        return order

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_order(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _find_by_idempotency_key(self, idempotency_key: str) -> Order | None:
        return self.session.execute(
            select(Order).where(Order.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def _check_expected_version(self, order: Order, expected_version: int | None) -> None:
        if expected_version is not None and expected_version != order.version:
            raise OptimisticLockError("Order", str(order.id))

    def _flush_order(self, order: Order) -> None:
        try:
            self.session.flush()
        except StaleDataError:
            logger.warning("order_version_conflict", extra={"order_id": str(order.id)})
            raise OptimisticLockError("Order", str(order.id)) from None

    @staticmethod
    def _distinct_product_ids(product_ids: Iterable[UUID]) -> list[UUID]:
        seen: list[UUID] = []
        for pid in product_ids:
            if pid in seen:
                raise DuplicateLineError(str(pid))
            seen.append(pid)
        return seen

    def _price_line(
        self,
        profile: CustomerPricingProfile,
        quotes: dict[UUID, ProductQuote],
        request: LineRequest,
    ) -> _PricedLine:
        quote = quotes.get(request.product_id)
        if quote is None:
            raise ProductNotFoundError(str(request.product_id))
        if not quote.is_active:
            raise InactiveProductError(str(quote.product_id), quote.name)

        quantity = self._parse_quantity(quote.product_id, request.quantity)
        if quantity <= 0 or quantity > self._max_line_quantity:
            raise InvalidQuantityError(
                str(quote.product_id),
                str(quantity),
                f"must be greater than 0 and at most {self._max_line_quantity}",
            )
        if quote.requires_whole_quantity and quantity != quantity.to_integral_value():
            raise InvalidQuantityError(
                str(quote.product_id),
                str(quantity),
                f'"{quote.name}" is sold by piece and requires a whole number quantity',
            )

        requested_rate = (
            self._parse_rate(quote.product_id, request.rate)
            if request.rate is not None
            else None
        )

        resolution = resolve_price(profile, quote.product_id, quote.market_rate, requested_rate)
        return _PricedLine(
            quote=quote,
            quantity=quantity,
            resolution=resolution,
            amount=line_amount(quantity, resolution.rate),
        )

    @staticmethod
    def _parse_quantity(product_id: UUID, raw: Decimal) -> Decimal:
        try:
            quantity = to_decimal(raw)
        except ValueError:
            raise InvalidQuantityError(str(product_id), str(raw), "not a number") from None
        if quantity < 0:
            raise InvalidQuantityError(str(product_id), str(quantity), "must not be negative")
        if quantity != quantity.quantize(_QUANTITY_STEP):
            raise InvalidQuantityError(
                str(product_id), str(quantity), "at most 3 decimal places"
            )
        return quantity

    @staticmethod
    def _parse_rate(product_id: UUID, raw: Decimal) -> Decimal:
        try:
            rate = round2(raw)
        except ValueError:
            raise InvalidRateError(str(product_id), str(raw)) from None
        if rate < 0:
            raise InvalidRateError(str(product_id), str(rate))
        return rate


def _is_removal(edit: LineEdit) -> bool:
    if edit.quantity is None:
        return False
    try:
        return to_decimal(edit.quantity) == 0
    except ValueError:
        return False
