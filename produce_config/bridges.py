"""
Bridges from ProduceConfig to kernel constructor arguments.

The kernel takes plain values so it never depends on this package.
"""

from __future__ import annotations

from typing import Any

from produce_config.schema import DatabaseSettings, OrderingPolicy


def lifecycle_options(policy: OrderingPolicy) -> dict[str, Any]:
    """Keyword arguments for OrderLifecycleManager."""
    return {
        "order_prefix": policy.order_number_prefix,
        "sequence_width": policy.order_number_width,
        "max_line_quantity": policy.max_line_quantity,
        "price_audit_limit": policy.price_audit_limit,
    }


def engine_options(settings: DatabaseSettings) -> dict[str, Any]:
    """Keyword arguments for init_engine_from_url."""
    return {
        "database_url": settings.url,
        "echo": settings.echo,
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_timeout": settings.pool_timeout,
        "pool_recycle": settings.pool_recycle,
    }
