"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Provides strictly increasing integers per named counter, and mints
    order numbers of the form ``ORD`` + YY + MM + 4-digit sequence.  Each
    year-month uses its own counter name, so numbering restarts every
    month without any reset job.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by OrderLifecycleManager (order numbers), CreditLedger (ledger
    entry ordering) and the price audit trail.

Invariants enforced:
    - Allocation is ONE atomic statement:
      ``UPDATE sequence_counters SET current_value = current_value + 1
      WHERE name = :name RETURNING current_value``.
      Read-then-write and aggregate-max-plus-one are never used; the row
      lock taken by the UPDATE serializes concurrent callers across
      processes.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  Rollback returns the value, so no gaps appear
      from aborted orders.

Failure modes:
    - IntegrityError on concurrent first use of a counter name (handled via
      savepoint rollback and retry).
    - Any other storage error propagates.  Callers must not fabricate a
      number.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from produce_kernel.db.base import Base
from produce_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # e.g. "order_ORD2401", "credit_<customer uuid>", "price_<order uuid>"
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a counter name and returns the next strictly increasing
        integer for it.  The increment commits with the caller's
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        with session_scope() as session:
            number = SequenceService(session).next_order_number(clock.now())
    """

    def __init__(
        self,
        session: Session,
        order_prefix: str = "ORD",
        sequence_width: int = 4,
    ):
        self._session = session
        self._order_prefix = order_prefix
        self._sequence_width = sequence_width

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for this name.

        Args:
            sequence_name: Name of the sequence.

        Returns:
            The next sequence value.
        """
        value = self._increment(sequence_name)
        if value is None:
            value = self._create_counter(sequence_name)

        assert value > 0, "sequence value must be strictly positive"
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def _increment(self, sequence_name: str) -> int | None:
        return self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .returning(SequenceCounter.current_value)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

    def _create_counter(self, sequence_name: str) -> int:
        # First use of this name.  Another transaction may create it at the
        # same time; the savepoint keeps the rest of our work intact.
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
            savepoint.commit()
            return 1
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            value = self._increment(sequence_name)
            if value is None:
                raise
            return value

    def counter_name_for(self, at: datetime) -> str:
        """Counter name for orders placed in ``at``'s year-month."""
        return f"order_{self.period_prefix(at)}"

    def period_prefix(self, at: datetime) -> str:
        """``ORD`` + 2-digit year + 2-digit month."""
        return f"{self._order_prefix}{at:%y%m}"

    def next_order_number(self, at: datetime) -> str:
        """Mint the next order number for the period containing ``at``."""
        seq = self.next_value(self.counter_name_for(at))
        return f"{self.period_prefix(at)}{seq:0{self._sequence_width}d}"

    def current_value(self, sequence_name: str) -> int | None:
        """
        Get the current value of a sequence without incrementing.

        Returns:
            Current value, or None if the sequence doesn't exist.
        """
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        WARNING: tests and migration scripts only.  Resetting a live
        sequence can mint duplicate order numbers.
        """
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
            self._session.flush()


def credit_counter_name(customer_id) -> str:
    """Counter ordering one customer's credit ledger entries."""
    return f"credit_{customer_id}"


def price_change_counter_name(order_id) -> str:
    """Counter ordering one order's price audit trail."""
    return f"price_{order_id}"
