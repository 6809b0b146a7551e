"""Transaction-owning services consumed by the route layer."""

from produce_services.order_commands import (
    OrderCommandResult,
    OrderCommandService,
    OrderCommandStatus,
    build_order_command_service,
)

__all__ = [
    "OrderCommandResult",
    "OrderCommandService",
    "OrderCommandStatus",
    "build_order_command_service",
]
