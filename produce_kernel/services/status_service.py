"""
OrderStatusService -- compare-and-swap status transitions.

Responsibility:
    Applies one lifecycle transition to an order, conditioned on the status
    the caller observed.  The transition rules themselves live in
    ``domain/order_status.py``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    OrderLifecycleManager for every status change, including cancellation.

Invariants enforced:
    - The write is ONE conditional statement:
      ``UPDATE orders SET status = :new, version = version + 1 ...
      WHERE id = :id AND status = :observed AND version = :loaded``.
      Zero affected rows means another request moved the order first; the
      caller gets OrderStatusConflictError and nothing is written.
    - The loaded version is part of the condition too, so a cancellation
      never restores credit computed from totals another request has
      since changed.
    - Conflicts are never retried here.  Re-evaluating a business decision
      on state the user never saw would defeat the check.
    - delivered stamps delivered_at; cancelled stamps cancelled_at and
      cancelled_by_id.  Rejected transitions stamp nothing.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import update

from produce_kernel.domain.order_status import OrderStatus, can_transition
from produce_kernel.exceptions import (
    InvalidStatusTransitionError,
    OrderStatusConflictError,
)
from produce_kernel.logging_config import get_logger
from produce_kernel.models.order import Order
from produce_kernel.services.base import BaseService

logger = get_logger("services.status")


class OrderStatusService(BaseService):
    """Moves orders along the lifecycle with optimistic protection."""

    def transition(
        self,
        order: Order,
        new_status: OrderStatus,
        actor_id: UUID,
        expected_status: OrderStatus | None = None,
    ) -> bool:
        """
        Move ``order`` to ``new_status``.

        Args:
            order: The order as loaded by the caller.
            new_status: Requested status.
            actor_id: Who is asking.
            expected_status: Status the client last saw.  Defaults to the
                loaded status.

        Returns:
            True if the status changed, False for a no-op (already there).

        Raises:
            OrderStatusConflictError: The stored status is not the observed
                one.
            InvalidStatusTransitionError: The lifecycle forbids the move.
        """
        new_status = OrderStatus(new_status)
        current = OrderStatus(order.status)
        observed = OrderStatus(expected_status) if expected_status else current

        if observed != current:
            logger.warning(
                "status_conflict",
                extra={
                    "order_id": str(order.id),
                    "expected_status": observed.value,
                    "actual_status": current.value,
                },
            )
            raise OrderStatusConflictError(str(order.id), observed.value, new_status.value)

        if new_status == current:
            return False

        if not can_transition(current, new_status):
            raise InvalidStatusTransitionError(str(order.id), current.value, new_status.value)

        now = self.clock.now()
        values: dict[str, Any] = {
            "status": new_status.value,
            "version": Order.version + 1,
            "updated_at": now,
            "updated_by_id": actor_id,
        }
        if new_status == OrderStatus.DELIVERED:
            values["delivered_at"] = now
        elif new_status == OrderStatus.CANCELLED:
            values["cancelled_at"] = now
            values["cancelled_by_id"] = actor_id

        # Pending ORM changes must reach the row before the conditional write.
        self.session.flush()
        result = self.session.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status == observed.value,
                Order.version == order.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(
                "status_conflict",
                extra={
                    "order_id": str(order.id),
                    "expected_status": observed.value,
                    "requested_status": new_status.value,
                },
            )
            raise OrderStatusConflictError(str(order.id), observed.value, new_status.value)

        self.session.refresh(order)
        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )
        return True
