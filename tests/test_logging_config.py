"""Tests for structured JSON logging and LogContext propagation."""

import json
import logging
from decimal import Decimal
from uuid import UUID

from produce_kernel.domain.order_status import OrderStatus
from produce_kernel.exceptions import OrderStatusConflictError
from produce_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def format_record(message, exc_info=None, **extra):
    record = logging.LogRecord("produce_kernel.test", logging.INFO, __file__, 1, message, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatter:
    def test_basic_fields(self):
        payload = format_record("order_created")

        assert payload["message"] == "order_created"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "produce_kernel.test"
        assert "ts" in payload

    def test_domain_values_serialized(self):
        payload = format_record(
            "credit_applied",
            amount=Decimal("10.50"),
            customer_id=UUID("00000000-0000-0000-0000-000000000009"),
            status=OrderStatus.CONFIRMED,
        )

        assert payload["amount"] == "10.50"
        assert payload["customer_id"] == "00000000-0000-0000-0000-000000000009"
        assert payload["status"] == "confirmed"

    def test_exception_fields(self):
        try:
            raise OrderStatusConflictError("o-1", "pending", "confirmed")
        except OrderStatusConflictError as exc:
            payload = format_record("failed", exc_info=(type(exc), exc, exc.__traceback__))

        assert payload["exc_type"] == "OrderStatusConflictError"
        assert payload["exc_code"] == "ORDER_STATUS_CONFLICT"
        assert "traceback" in payload


class TestLogContext:
    def test_bound_fields_appear_in_records(self):
        with LogContext.bind(command="cancel_order", order_id="o-7"):
            payload = format_record("order_cancelled")

        assert payload["command"] == "cancel_order"
        assert payload["order_id"] == "o-7"

    def test_bind_restores_previous_values(self):
        LogContext.set(command="outer")
        with LogContext.bind(command="inner"):
            assert LogContext.get_all()["command"] == "inner"
        assert LogContext.get_all()["command"] == "outer"

    def test_none_values_skipped(self):
        with LogContext.bind(command="create_order", order_id=None):
            assert "order_id" not in LogContext.get_all()


class TestGetLogger:
    def test_namespaced(self, captured_logs):
        get_logger("services.example").info("hello", extra={"n": 1})

        records = captured_logs()
        assert records[-1]["logger"] == "produce_kernel.services.example"
        assert records[-1]["n"] == 1
