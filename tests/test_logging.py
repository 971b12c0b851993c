"""Tests for the structured logging system (payroll_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payroll_kernel.domain.types import ResidencyStatus
from payroll_kernel.exceptions import NoApplicableRuleSetError
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "payroll_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("paycheck_finalized", extra={"component_count": 3, "status": "finalized"})

        record = _parse_log(stream)
        assert record["component_count"] == 3
        assert record["status"] == "finalized"

    def test_money_and_dates_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "amounts",
            extra={
                "net_pay": Decimal("4842.64"),
                "pay_date": date(2025, 1, 31),
                "residency": ResidencyStatus.NON_RESIDENT,
            },
        )

        record = _parse_log(stream)
        assert record["net_pay"] == "4842.64"
        assert record["pay_date"] == "2025-01-31"
        assert record["residency"] == "non_resident"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        run_id = str(uuid4())
        LogContext.set(run_id=run_id, employee_id="E-1")
        get_logger("test").info("with context")

        record = _parse_log(stream)
        assert record["run_id"] == run_id
        assert record["employee_id"] == "E-1"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("no context")

        record = _parse_log(stream)
        assert "run_id" not in record
        assert "employee_id" not in record

    def test_payroll_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise NoApplicableRuleSetError("SR", "wage_tax", date(2025, 1, 31))
        except NoApplicableRuleSetError:
            get_logger("test").exception("failed")

        record = _parse_log(stream)
        assert record["exc_type"] == "NoApplicableRuleSetError"
        assert record["exc_code"] == "NO_APPLICABLE_RULE_SET"
        assert record["exc_tax_type"] == "wage_tax"
        assert record["exc_as_of"] == "2025-01-31"
        assert "traceback" in record

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        for i in range(5):
            logger.info("line", extra={"i": i})

        records = _parse_all_logs(stream)
        assert [r["i"] for r in records] == [0, 1, 2, 3, 4]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="abc")
        assert LogContext.get_all() == {"correlation_id": "abc"}

    def test_clear(self):
        LogContext.set(run_id="r1", actor_id="a1")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_stringifies_and_restores(self):
        employee_id = uuid4()
        with LogContext.bind(employee_id=employee_id, paycheck_id=None):
            assert LogContext.get_all() == {"employee_id": str(employee_id)}
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer_value(self):
        with LogContext.bind(run_id="outer"):
            with LogContext.bind(run_id="inner"):
                assert LogContext.get_all()["run_id"] == "inner"
            assert LogContext.get_all()["run_id"] == "outer"

    def test_unknown_field_ignored(self):
        with LogContext.bind(tenant="x"):
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        get_logger("test").info("once")

        assert len(_parse_all_logs(stream)) == 1

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]

    def test_logger_hierarchy(self):
        assert get_logger("engines.brackets").parent.name in ("payroll_kernel.engines", "payroll_kernel")
