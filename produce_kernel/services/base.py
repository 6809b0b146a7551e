"""
BaseService -- common base for kernel services that write.

Responsibility:
    Holds the caller's SQLAlchemy ``Session``.  Concrete services persist
    with ``session.flush()`` and never commit or roll back; the command
    façade in ``produce_services`` owns the transaction, so an order, its
    contract prices and its credit movement land together or not at all.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC

from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for flush-only kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models -- those belong in
          ``produce_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source for lifecycle timestamps.  Defaults to
                SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()
