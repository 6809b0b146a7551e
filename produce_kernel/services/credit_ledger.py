"""
CreditLedger -- atomic, clamped customer credit movements.

Responsibility:
    Applies signed deltas to ``Customer.current_credit`` and appends one
    ``CreditLedgerEntry`` per effective movement, so the cached balance can
    always be recomputed from the ledger and checked for drift.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    OrderLifecycleManager for every order event that moves money, and
    directly for manual adjustments.

Invariants enforced:
    - The balance never goes below zero.  The new balance is computed by
      ONE conditional statement:
      ``UPDATE customers SET current_credit = CASE WHEN current_credit + :d
      < 0 THEN 0 ELSE ROUND(current_credit + :d, 2) END WHERE id = :id``.
      The stored value is never read into Python, modified and written
      back.
    - Every non-zero movement writes exactly one ledger entry recording
      the requested delta, the applied delta (after clamping) and the
      resulting balance.
    - Flush-only: the balance change and its ledger entry commit (or roll
      back) with the caller's order write.

Failure modes:
    - CustomerNotFoundError if the customer row does not exist.
    - Storage errors propagate; nothing is retried here.

Audit relevance:
    ``verify_balance`` logs ``credit_balance_drift`` when the cached value
    and the ledger fold disagree.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from produce_kernel.db.base import MONEY
from produce_kernel.domain.clock import Clock
from produce_kernel.domain.money import ZERO, round2
from produce_kernel.exceptions import CustomerNotFoundError
from produce_kernel.logging_config import get_logger
from produce_kernel.models.credit_ledger import CreditEntryType, CreditLedgerEntry
from produce_kernel.models.customer import Customer
from produce_kernel.services.base import BaseService
from produce_kernel.services.sequence_service import (
    SequenceService,
    credit_counter_name,
)

logger = get_logger("services.credit_ledger")


@dataclass(frozen=True)
class CreditApplication:
    """Result of one credit movement."""

    customer_id: UUID
    entry_type: CreditEntryType
    requested_delta: Decimal
    applied_delta: Decimal
    balance_before: Decimal
    balance_after: Decimal
    entry_seq: int | None = None

    @property
    def clamped(self) -> bool:
        return self.applied_delta != self.requested_delta


@dataclass(frozen=True)
class BalanceCheck:
    """Cached balance compared with the ledger fold."""

    customer_id: UUID
    cached_balance: Decimal
    ledger_balance: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance

    @property
    def drift(self) -> Decimal:
        return round2(self.cached_balance - self.ledger_balance)


class CreditLedger(BaseService):
    """
    Moves customer credit balances.

    Contract:
        ``apply_delta`` adds a signed amount to a customer's balance,
        clamping at zero, and records the movement.

    Non-goals:
        - Does NOT decide deltas for order events; OrderLifecycleManager
          computes them.
        - Does NOT commit.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)

    def apply_delta(
        self,
        customer_id: UUID,
        delta: Decimal,
        entry_type: CreditEntryType,
        actor_id: UUID,
        order_id: UUID | None = None,
        order_number: str | None = None,
        description: str | None = None,
    ) -> CreditApplication:
        """
        Add ``delta`` to the customer's balance, clamped at zero.

        A zero delta writes nothing and returns the current balance.

        Raises:
            CustomerNotFoundError: If the customer does not exist.
        """
        requested = round2(delta)

        balance_before = self._locked_balance(customer_id)

        if requested == ZERO:
            return CreditApplication(
                customer_id=customer_id,
                entry_type=entry_type,
                requested_delta=ZERO,
                applied_delta=ZERO,
                balance_before=balance_before,
                balance_after=balance_before,
            )

        proposed = Customer.current_credit + requested
        balance_after = self.session.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(
                current_credit=case(
                    (proposed < 0, 0),
                    else_=func.round(proposed, 2, type_=MONEY),
                ),
                updated_at=self.clock.now(),
                updated_by_id=actor_id,
            )
            .returning(Customer.current_credit)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

        if balance_after is None:
            raise CustomerNotFoundError(str(customer_id))

        balance_after = round2(balance_after)
        applied = round2(balance_after - balance_before)
        self._expire_cached_customer(customer_id)

        entry_seq = self._sequences.next_value(credit_counter_name(customer_id))
        self.session.add(
            CreditLedgerEntry(
                customer_id=customer_id,
                entry_seq=entry_seq,
                entry_type=entry_type,
                order_id=order_id,
                order_number=order_number,
                requested_delta=requested,
                applied_delta=applied,
                balance_after=balance_after,
                description=description,
                created_by_id=actor_id,
            )
        )
        self.session.flush()

        application = CreditApplication(
            customer_id=customer_id,
            entry_type=entry_type,
            requested_delta=requested,
            applied_delta=applied,
            balance_before=balance_before,
            balance_after=balance_after,
            entry_seq=entry_seq,
        )

        log_extra = {
            "customer_id": str(customer_id),
            "entry_type": entry_type.value,
            "order_number": order_number,
            "requested_delta": requested,
            "applied_delta": applied,
            "balance_after": balance_after,
        }
        if application.clamped:
            logger.warning("credit_clamped_at_zero", extra=log_extra)
        else:
            logger.info("credit_applied", extra=log_extra)

        return application

    def record_adjustment(
        self,
        customer_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> CreditApplication:
        """Manual signed adjustment (opening balances, write-offs)."""
        return self.apply_delta(
            customer_id,
            amount,
            CreditEntryType.ADJUSTMENT,
            actor_id,
            description=description,
        )

    def balance_from_entries(self, customer_id: UUID) -> Decimal:
        """Fold the customer's ledger in entry order."""
        applied = self.session.execute(
            select(CreditLedgerEntry.applied_delta)
            .where(CreditLedgerEntry.customer_id == customer_id)
            .order_by(CreditLedgerEntry.entry_seq)
        ).scalars()

        balance = ZERO
        for delta in applied:
            balance = max(ZERO, round2(balance + delta))
        return balance

    def verify_balance(self, customer_id: UUID) -> BalanceCheck:
        """Compare the cached balance with the ledger fold."""
        cached = self.session.execute(
            select(Customer.current_credit).where(Customer.id == customer_id)
        ).scalar_one_or_none()
        if cached is None:
            raise CustomerNotFoundError(str(customer_id))

        check = BalanceCheck(
            customer_id=customer_id,
            cached_balance=round2(cached),
            ledger_balance=self.balance_from_entries(customer_id),
        )
        if not check.is_consistent:
            logger.warning(
                "credit_balance_drift",
                extra={
                    "customer_id": str(customer_id),
                    "cached_balance": check.cached_balance,
                    "ledger_balance": check.ledger_balance,
                    "drift": check.drift,
                },
            )
        return check

    def _locked_balance(self, customer_id: UUID) -> Decimal:
        # FOR UPDATE holds the row until commit so balance_before and the
        # conditional UPDATE see the same value.  SQLite ignores it; its
        # BEGIN IMMEDIATE already serializes writers.
        balance = self.session.execute(
            select(Customer.current_credit)
            .where(Customer.id == customer_id)
            .with_for_update()
        ).scalar_one_or_none()
        if balance is None:
            raise CustomerNotFoundError(str(customer_id))
        return round2(balance)

    def _expire_cached_customer(self, customer_id: UUID) -> None:
        cached = self.session.identity_map.get(identity_key(Customer, customer_id))
        if cached is not None:
            self.session.expire(cached, ["current_credit", "updated_at", "updated_by_id"])
