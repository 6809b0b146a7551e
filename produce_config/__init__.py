"""
produce_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration.  No
    other component reads configuration files or environment variables.

Architecture position:
    Configuration.  Sits above ``produce_kernel`` and below
    ``produce_services``.  The kernel never imports from here; the bridge
    module turns a ProduceConfig into plain kernel arguments.

Environment:
    PRODUCE_CONFIG_PATH    YAML file to load instead of the packaged
                           defaults.yaml.
    PRODUCE_DATABASE_URL   Replaces database.url from the file.

Audit relevance:
    Every successful call emits a ``PRODUCE_CONFIG_TRACE`` log entry with
    the config id, version and checksum.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from produce_config.loader import load_yaml_file, parse_config
from produce_config.schema import (
    DatabaseSettings,
    LoggingSettings,
    OrderingPolicy,
    ProduceConfig,
)

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "OrderingPolicy",
    "ProduceConfig",
    "get_active_config",
]

_logger = logging.getLogger("produce_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "PRODUCE_CONFIG_PATH"
DATABASE_URL_ENV = "PRODUCE_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> ProduceConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Falls back to $PRODUCE_CONFIG_PATH, then
            to the packaged defaults.yaml.

    Returns:
        A validated, frozen ProduceConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config_path = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = parse_config(load_yaml_file(config_path))

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=database_url),
        )

    _logger.info(
        "PRODUCE_CONFIG_TRACE",
        extra={
            "trace_type": "PRODUCE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(config_path),
            "database_url_overridden": bool(database_url),
        },
    )

    return config
