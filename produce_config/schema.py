"""
Configuration schema.

The YAML file is parsed into these frozen types by the loader.  Nothing
outside produce_config sees the raw mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class OrderingPolicy:
    """Business limits for the order lifecycle."""

    order_number_prefix: str = "ORD"
    order_number_width: int = 4
    max_line_quantity: Decimal = Decimal("10000")
    # Retained price-change entries per order; older ones are evicted
    price_audit_limit: int = 100


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///produce.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class ProduceConfig:
    """The runtime configuration artifact."""

    config_id: str
    version: int
    ordering: OrderingPolicy = field(default_factory=OrderingPolicy)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""
