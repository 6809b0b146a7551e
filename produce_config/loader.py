"""
YAML loader for produce configuration.

Parses one YAML document into a ``ProduceConfig``.  Missing sections fall
back to the dataclass defaults; unknown keys are rejected so a typo cannot
silently leave a limit at its default.

Failure modes:
    * Missing file    -> ``FileNotFoundError``
    * Malformed YAML  -> ``yaml.YAMLError`` propagates.
    * Invalid values  -> ``ValueError`` listing every problem found.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from produce_config.schema import (
    DatabaseSettings,
    LoggingSettings,
    OrderingPolicy,
    ProduceConfig,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty document yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _check_keys(section: str, data: dict[str, Any], cls: type) -> list[str]:
    allowed = {f.name for f in fields(cls)}
    return [f"{section}: unknown key '{key}'" for key in sorted(set(data) - allowed)]


def parse_ordering(data: dict[str, Any], errors: list[str]) -> OrderingPolicy:
    errors.extend(_check_keys("ordering", data, OrderingPolicy))
    defaults = OrderingPolicy()

    prefix = str(data.get("order_number_prefix", defaults.order_number_prefix))
    if not prefix or not prefix.isalnum():
        errors.append("ordering.order_number_prefix must be non-empty alphanumeric")

    width = data.get("order_number_width", defaults.order_number_width)
    if not isinstance(width, int) or not 1 <= width <= 9:
        errors.append("ordering.order_number_width must be an integer in [1, 9]")

    try:
        max_qty = Decimal(str(data.get("max_line_quantity", defaults.max_line_quantity)))
    except InvalidOperation:
        max_qty = defaults.max_line_quantity
        errors.append("ordering.max_line_quantity must be a number")
    if max_qty <= 0:
        errors.append("ordering.max_line_quantity must be positive")

    audit_limit = data.get("price_audit_limit", defaults.price_audit_limit)
    if not isinstance(audit_limit, int) or audit_limit < 1:
        errors.append("ordering.price_audit_limit must be a positive integer")

    return OrderingPolicy(
        order_number_prefix=prefix,
        order_number_width=width,
        max_line_quantity=max_qty,
        price_audit_limit=audit_limit,
    )


def parse_database(data: dict[str, Any], errors: list[str]) -> DatabaseSettings:
    errors.extend(_check_keys("database", data, DatabaseSettings))
    defaults = DatabaseSettings()

    url = str(data.get("url", defaults.url) or "")
    if not url:
        errors.append("database.url is required")

    sizes = {}
    for name in ("pool_size", "max_overflow", "pool_timeout", "pool_recycle"):
        value = data.get(name, getattr(defaults, name))
        if not isinstance(value, int) or value < 0:
            errors.append(f"database.{name} must be a non-negative integer")
            value = getattr(defaults, name)
        sizes[name] = value

    return DatabaseSettings(url=url, echo=bool(data.get("echo", False)), **sizes)


def parse_logging(data: dict[str, Any], errors: list[str]) -> LoggingSettings:
    errors.extend(_check_keys("logging", data, LoggingSettings))
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        errors.append(f"logging.level must be one of {sorted(_LOG_LEVELS)}")
    return LoggingSettings(level=level)


def parse_config(data: dict[str, Any]) -> ProduceConfig:
    """
    Build a ProduceConfig from a parsed YAML mapping.

    Raises:
        ValueError: If any section is invalid.  All problems are reported
            together.
    """
    errors: list[str] = []

    config_id = data.get("config_id")
    if not config_id:
        errors.append("config_id is required")

    ordering = parse_ordering(data.get("ordering") or {}, errors)
    database = parse_database(data.get("database") or {}, errors)
    logging_settings = parse_logging(data.get("logging") or {}, errors)

    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    return ProduceConfig(
        config_id=str(config_id),
        version=int(data.get("version", 1)),
        ordering=ordering,
        database=database,
        logging=logging_settings,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical hash."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
