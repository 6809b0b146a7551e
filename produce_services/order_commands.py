"""
OrderCommandService -- transaction-owning entry point for order commands.

Responsibility:
    Runs each order command in its own session and transaction: commit on
    success, rollback on any failure, so no partial order and no partial
    credit movement is ever visible.  Translates kernel domain errors into
    an ``OrderCommandResult`` the route layer can map to a response, and
    hands an audit record to the AuditSink after a successful commit.

Architecture position:
    Services -- above ``produce_kernel`` and ``produce_config``.  The only
    layer that calls ``session.commit()``.

Failure modes:
    - Domain errors (not found, invalid input, forbidden, conflict) come
      back as results with ``is_success`` False.  Nothing was committed.
    - Storage failures (``DBAPIError`` and subclasses such as
      ``OperationalError``) roll back and raise StorageUnavailableError.
    - Anything else rolls back and re-raises.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from produce_config import OrderingPolicy
from produce_config.bridges import lifecycle_options
from produce_kernel.domain.clock import Clock, SystemClock
from produce_kernel.domain.commands import (
    Actor,
    LineEdit,
    LineRequest,
    PriceEditCommand,
)
from produce_kernel.domain.order_status import OrderStatus
from produce_kernel.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    ProduceKernelError,
    StorageUnavailableError,
)
from produce_kernel.logging_config import LogContext, get_logger
from produce_kernel.selectors.order_selector import OrderInfo
from produce_kernel.services.audit_sink import (
    AuditRecord,
    AuditSink,
    LoggingAuditSink,
    emit_best_effort,
)
from produce_kernel.services.order_lifecycle import (
    NewContractPrice,
    OrderLifecycleManager,
)

logger = get_logger("services.order_commands")


class OrderCommandStatus(str, Enum):
    """Outcome class of an order command."""

    OK = "ok"
    IDEMPOTENT = "idempotent"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class OrderCommandResult:
    """Result of an order command."""

    status: OrderCommandStatus
    order: OrderInfo | None = None
    idempotent: bool = False
    warnings: tuple[str, ...] = ()
    new_contract_prices: tuple[NewContractPrice, ...] = ()
    error_code: str | None = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (
            OrderCommandStatus.OK,
            OrderCommandStatus.IDEMPOTENT,
        )


_ERROR_STATUS: tuple[tuple[type[ProduceKernelError], OrderCommandStatus], ...] = (
    (NotFoundError, OrderCommandStatus.NOT_FOUND),
    (InvalidInputError, OrderCommandStatus.INVALID_INPUT),
    (ForbiddenError, OrderCommandStatus.FORBIDDEN),
    (ConflictError, OrderCommandStatus.CONFLICT),
)


class OrderCommandService:
    """
    Transaction boundary for the order lifecycle.

    Contract:
        Each public method opens a session from ``session_factory``, runs
        one OrderLifecycleManager operation, and commits or rolls back.

    Usage:
        commands = OrderCommandService(get_session_factory(), policy=config.ordering)
        result = commands.create_order(customer_id, lines, actor, idempotency_key=key)
        if result.is_success:
            ...
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        policy: OrderingPolicy | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or OrderingPolicy()
        self._audit_sink = audit_sink or LoggingAuditSink()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_order(
        self,
        customer_id: UUID,
        lines: Sequence[LineRequest],
        actor: Actor,
        idempotency_key: str | None = None,
        delivery_address: str | None = None,
        notes: str | None = None,
        batch_id: UUID | None = None,
    ) -> OrderCommandResult:
        def run(manager: OrderLifecycleManager) -> OrderCommandResult:
            creation = manager.create(
                customer_id,
                lines,
                actor,
                idempotency_key=idempotency_key,
                delivery_address=delivery_address,
                notes=notes,
                batch_id=batch_id,
            )
            return OrderCommandResult(
                status=(
                    OrderCommandStatus.IDEMPOTENT
                    if creation.idempotent
                    else OrderCommandStatus.OK
                ),
                order=OrderInfo.from_model(creation.order),
                idempotent=creation.idempotent,
                warnings=creation.warnings,
                new_contract_prices=creation.new_contract_prices,
            )

        return self._execute(
            "create_order",
            actor,
            run,
            customer_id=customer_id,
            details={"idempotency_key": idempotency_key, "line_count": len(lines)},
        )

    def update_order_prices(
        self,
        order_id: UUID,
        lines: Sequence[LineEdit],
        command: PriceEditCommand,
    ) -> OrderCommandResult:
        def run(manager: OrderLifecycleManager) -> OrderCommandResult:
            update = manager.update_prices(order_id, lines, command)
            return OrderCommandResult(
                status=OrderCommandStatus.OK,
                order=OrderInfo.from_model(update.order),
                warnings=update.warnings,
                new_contract_prices=update.new_contract_prices,
            )

        return self._execute(
            "update_order_prices",
            command.actor,
            run,
            order_id=order_id,
            details={"line_count": len(lines), "reason": command.reason},
        )

    def transition_status(
        self,
        order_id: UUID,
        new_status: OrderStatus,
        actor: Actor,
        expected_status: OrderStatus | None = None,
    ) -> OrderCommandResult:
        return self._execute(
            "transition_status",
            actor,
            lambda manager: self._ok(
                manager.transition_status(order_id, new_status, actor, expected_status)
            ),
            order_id=order_id,
            details={"new_status": OrderStatus(new_status).value},
        )

    def record_payment(
        self,
        order_id: UUID,
        paid_amount: Decimal,
        actor: Actor,
        expected_version: int | None = None,
    ) -> OrderCommandResult:
        return self._execute(
            "record_payment",
            actor,
            lambda manager: self._ok(
                manager.record_payment(order_id, paid_amount, actor, expected_version)
            ),
            order_id=order_id,
            details={"paid_amount": str(paid_amount)},
        )

    def cancel_order(
        self,
        order_id: UUID,
        actor: Actor,
        expected_status: OrderStatus | None = None,
    ) -> OrderCommandResult:
        return self._execute(
            "cancel_order",
            actor,
            lambda manager: self._ok(manager.cancel(order_id, actor, expected_status)),
            order_id=order_id,
        )

    def mark_reconciled(self, order_id: UUID, actor: Actor) -> OrderCommandResult:
        return self._execute(
            "mark_reconciled",
            actor,
            lambda manager: self._ok(manager.mark_reconciled(order_id, actor)),
            order_id=order_id,
        )

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    @staticmethod
    def _ok(order) -> OrderCommandResult:
        return OrderCommandResult(
            status=OrderCommandStatus.OK,
            order=OrderInfo.from_model(order),
        )

    def _execute(
        self,
        command: str,
        actor: Actor,
        run: Callable[[OrderLifecycleManager], OrderCommandResult],
        order_id: UUID | None = None,
        customer_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> OrderCommandResult:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            command=command,
            actor_id=actor.actor_id,
            order_id=order_id,
            customer_id=customer_id,
        ):
            logger.info("order_command_started")
            t0 = time.monotonic()
            session = self._session_factory()
            try:
                manager = OrderLifecycleManager(
                    session, self._clock, **lifecycle_options(self._policy)
                )
                result = run(manager)
                session.commit()
            except StorageUnavailableError:
                session.rollback()
                raise
            except ProduceKernelError as exc:
                session.rollback()
                result = self._rejected(exc)
                logger.warning(
                    "order_command_rejected",
                    extra={
                        "status": result.status.value,
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result
            except DBAPIError as exc:
                session.rollback()
                logger.error(
                    "order_command_storage_failure",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise StorageUnavailableError(command, str(exc.orig or exc)) from exc
            except Exception:
                session.rollback()
                logger.error(
                    "order_command_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise
            finally:
                session.close()

            logger.info(
                "order_command_completed",
                extra={
                    "status": result.status.value,
                    "order_number": result.order.order_number if result.order else None,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )

            if result.status == OrderCommandStatus.OK:
                emit_best_effort(
                    self._audit_sink,
                    AuditRecord(
                        action=command,
                        entity_id=result.order.id if result.order else order_id,
                        actor_id=actor.actor_id,
                        details={
                            **(details or {}),
                            "order_number": (
                                result.order.order_number if result.order else None
                            ),
                        },
                    ),
                )
            return result

    @staticmethod
    def _rejected(exc: ProduceKernelError) -> OrderCommandResult:
        for error_type, status in _ERROR_STATUS:
            if isinstance(exc, error_type):
                return OrderCommandResult(
                    status=status,
                    error_code=exc.code,
                    message=str(exc),
                )
        raise exc


def build_order_command_service(
    config_path: Path | str | None = None,
    clock: Clock | None = None,
    audit_sink: AuditSink | None = None,
) -> OrderCommandService:
    """Build an OrderCommandService from config (single entrypoint for production).

    Loads config via get_active_config(config_path), configures logging,
    initializes the engine from the database section, and wires the
    ordering policy into the service.

    Args:
        config_path: Optional YAML file; see ``get_active_config``.
        clock: Optional clock; default SystemClock.
        audit_sink: Optional sink; default LoggingAuditSink.
    """
    from produce_config import get_active_config
    from produce_config.bridges import engine_options
    from produce_kernel.db.engine import get_session_factory, init_engine_from_url
    from produce_kernel.logging_config import configure_logging

    config = get_active_config(config_path)
    configure_logging(level=config.logging.level)
    init_engine_from_url(**engine_options(config.database))
    return OrderCommandService(
        get_session_factory(),
        clock=clock,
        policy=config.ordering,
        audit_sink=audit_sink,
    )
