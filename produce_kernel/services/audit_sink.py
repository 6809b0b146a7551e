"""
AuditSink -- best-effort hand-off of order events to the audit log.

Audit persistence belongs to another service.  The command façade calls
``record`` after a successful commit; a failing sink is logged and never
undoes or fails the business operation.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from produce_kernel.logging_config import get_logger

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditRecord:
    action: str
    entity_id: UUID | None
    actor_id: UUID
    details: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None: ...


class LoggingAuditSink:
    """Writes audit records to the structured log."""

    def record(self, record: AuditRecord) -> None:
        logger.info(
            "audit_record",
            extra={
                "action": record.action,
                "entity_id": str(record.entity_id) if record.entity_id else None,
                "audit_actor_id": str(record.actor_id),
                "details": record.details,
            },
        )


def emit_best_effort(sink: AuditSink, record: AuditRecord) -> None:
    """Deliver ``record``; failures are logged, never raised."""
    try:
        sink.record(record)
    except Exception:
        logger.warning(
            "audit_sink_failed",
            extra={"action": record.action, "entity_id": str(record.entity_id)},
            exc_info=True,
        )
