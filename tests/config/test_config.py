"""Tests for configuration loading, validation and the service builder."""

from decimal import Decimal

import pytest
import yaml

from produce_config import (
    DatabaseSettings,
    OrderingPolicy,
    get_active_config,
)
from produce_config.bridges import engine_options, lifecycle_options
from produce_config.loader import compute_checksum, parse_config


def write_config(tmp_path, data):
    path = tmp_path / "produce.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv("PRODUCE_CONFIG_PATH", raising=False)
    monkeypatch.delenv("PRODUCE_DATABASE_URL", raising=False)
    return monkeypatch


class TestGetActiveConfig:
    def test_packaged_defaults(self, clean_env):
        config = get_active_config()

        assert config.config_id == "produce-defaults"
        assert config.ordering == OrderingPolicy()
        assert config.ordering.max_line_quantity == Decimal("10000")
        assert config.logging.level == "INFO"
        assert len(config.checksum) == 64

    def test_explicit_path(self, clean_env, tmp_path):
        path = write_config(
            tmp_path,
            {
                "config_id": "market-yard",
                "version": 3,
                "ordering": {"order_number_prefix": "MY", "price_audit_limit": 10},
            },
        )

        config = get_active_config(path)

        assert config.version == 3
        assert config.ordering.order_number_prefix == "MY"
        assert config.ordering.price_audit_limit == 10
        assert config.ordering.order_number_width == 4
        assert config.database == DatabaseSettings()

    def test_path_from_environment(self, clean_env, tmp_path):
        path = write_config(tmp_path, {"config_id": "from-env"})
        clean_env.setenv("PRODUCE_CONFIG_PATH", str(path))

        assert get_active_config().config_id == "from-env"

    def test_database_url_override(self, clean_env):
        clean_env.setenv("PRODUCE_DATABASE_URL", "postgresql://u:p@db/produce")

        config = get_active_config()

        assert config.database.url == "postgresql://u:p@db/produce"
        assert config.database.pool_size == 20

    def test_trace_logged(self, clean_env, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "PRODUCE_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["config_id"] == "produce-defaults"

    def test_missing_file(self, clean_env, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")


class TestValidation:
    def test_config_id_required(self):
        with pytest.raises(ValueError, match="config_id is required"):
            parse_config({})

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="unknown key 'max_qty'"):
            parse_config({"config_id": "x", "ordering": {"max_qty": 5}})

    def test_all_problems_reported_together(self):
        with pytest.raises(ValueError) as exc_info:
            parse_config(
                {
                    "config_id": "x",
                    "ordering": {"order_number_width": 0, "price_audit_limit": 0},
                    "logging": {"level": "LOUD"},
                }
            )
        message = str(exc_info.value)
        assert "order_number_width" in message
        assert "price_audit_limit" in message
        assert "logging.level" in message

    @pytest.mark.parametrize("prefix", ["", "OR-D"])
    def test_bad_prefix(self, prefix):
        with pytest.raises(ValueError, match="order_number_prefix"):
            parse_config({"config_id": "x", "ordering": {"order_number_prefix": prefix}})

    def test_negative_pool_size(self):
        with pytest.raises(ValueError, match="database.pool_size"):
            parse_config({"config_id": "x", "database": {"pool_size": -1}})


class TestChecksum:
    def test_key_order_does_not_matter(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_content_changes_checksum(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestBridges:
    def test_lifecycle_options(self):
        options = lifecycle_options(
            OrderingPolicy(order_number_prefix="SO", order_number_width=6, price_audit_limit=5)
        )

        assert options == {
            "order_prefix": "SO",
            "sequence_width": 6,
            "max_line_quantity": Decimal("10000"),
            "price_audit_limit": 5,
        }

    def test_engine_options(self):
        options = engine_options(DatabaseSettings(url="sqlite:///x.db", pool_size=3))

        assert options["database_url"] == "sqlite:///x.db"
        assert options["pool_size"] == 3


class TestServiceBuilder:
    def test_builds_service_from_config(self, clean_env, tmp_path, monkeypatch, db_engine):
        from produce_kernel.db import engine as engine_module
        from produce_services import OrderCommandService, build_order_command_service

        seen = {}
        # Keep the suite's engine in place
        monkeypatch.setattr(
            engine_module, "init_engine_from_url", lambda **kwargs: seen.update(kwargs)
        )
        path = write_config(
            tmp_path,
            {
                "config_id": "builder",
                "ordering": {"order_number_prefix": "B"},
                "database": {"url": "sqlite:///builder.db"},
            },
        )

        service = build_order_command_service(path)

        assert isinstance(service, OrderCommandService)
        assert seen["database_url"] == "sqlite:///builder.db"
