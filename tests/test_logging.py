"""Tests for the structured logging system (stock_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


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
        assert record["logger"] == "stock_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("applied", extra={"line_count": 3, "kind": "purchase_order"})

        record = _parse_log(stream)
        assert record["line_count"] == 3
        assert record["kind"] == "purchase_order"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", job_id="job-456")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["job_id"] == "job-456"

    def test_decimal_and_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_values", extra={"material_id": uid, "on_hand": Decimal("1.50")})

        record = _parse_log(stream)
        assert record["material_id"] == str(uid)
        assert record["on_hand"] == "1.50"

    def test_stock_exception_fields_extracted(self):
        """Kernel exceptions carry .code and context attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from stock_kernel.exceptions import InsufficientStockError

        try:
            raise InsufficientStockError("m-1", "Red Fabric", Decimal("5"), Decimal("-20"))
        except InsufficientStockError:
            get_logger("test").error("deduction_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_material_name"] == "Red Fabric"
        assert record["exc_shortfall"] == "15"
        assert "traceback" in record

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(reference="PO-1", actor_id="a")
        assert LogContext.get_all() == {"reference": "PO-1", "actor_id": "a"}

    def test_clear(self):
        LogContext.set(job_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(job_id="outer")
        with LogContext.bind(job_id="inner"):
            assert LogContext.get_all()["job_id"] == "inner"
        assert LogContext.get_all()["job_id"] == "outer"

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(job_id="j", not_a_field="x"):
            assert LogContext.get_all() == {"job_id": "j"}
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        """A second call keeps the first handler and adds nothing."""
        reset_logging()
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("stock_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers
        structured = [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]
        assert structured == [h1]

    def test_logger_hierarchy(self):
        """Engine and config loggers live under the stock_kernel root."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        logging.getLogger("stock_kernel.engines.tracer").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "stock_kernel.engines.tracer"
