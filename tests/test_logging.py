"""Tests for the structured JSON logging in billing_kernel.logging_config."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.domain.agreements import BillingType
from billing_kernel.exceptions import BatchImmutableError, ConcurrentTransitionError
from billing_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start from an unconfigured logger, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


class _Capture:
    def __init__(self, level=logging.INFO):
        self.stream = StringIO()
        configure_logging(handler=logging.StreamHandler(self.stream), level=level)

    def records(self) -> list[dict]:
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line]

    def last(self) -> dict:
        return self.records()[-1]


@pytest.fixture
def json_logs():
    return _Capture()


class TestStructuredFormatter:
    def test_envelope(self, json_logs):
        get_logger("batch.service").info("batch_created")

        record = json_logs.last()
        assert record["level"] == "INFO"
        assert record["message"] == "batch_created"
        assert record["logger"] == "billing_kernel.batch.service"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields(self, json_logs):
        get_logger("batch.service").info(
            "batch_transitioned", extra={"version": 3, "to_status": "review"}
        )
        record = json_logs.last()
        assert record["version"] == 3
        assert record["to_status"] == "review"

    def test_context_fields(self, json_logs):
        LogContext.set(correlation_id="req-7", batch_id="b-1")
        get_logger("test").info("ctx")

        record = json_logs.last()
        assert record["correlation_id"] == "req-7"
        assert record["batch_id"] == "b-1"

    def test_no_context_fields_when_unset(self, json_logs):
        get_logger("test").info("bare")
        record = json_logs.last()
        assert not set(CONTEXT_FIELDS) & set(record)

    def test_context_wins_over_extra_with_same_name(self, json_logs):
        with LogContext.bind(batch_id="from-context"):
            get_logger("test").info("clash", extra={"batch_id": "from-extra"})
        assert json_logs.last()["batch_id"] == "from-context"

    def test_plain_exception(self, json_logs):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = json_logs.last()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_billing_error_attributes(self, json_logs):
        try:
            raise BatchImmutableError("b-1", "exported", "add entry to")
        except BatchImmutableError:
            get_logger("test").error("batch_error", exc_info=True)

        record = json_logs.last()
        assert record["exc_code"] == "BATCH_IMMUTABLE"
        assert record["exc_batch_id"] == "b-1"
        assert record["exc_status"] == "exported"
        assert record["exc_operation"] == "add entry to"

    def test_conflict_versions_logged(self, json_logs):
        try:
            raise ConcurrentTransitionError("b-2", 1, 2)
        except ConcurrentTransitionError:
            get_logger("test").warning("conflict", exc_info=True)

        record = json_logs.last()
        assert record["exc_expected_version"] == 1
        assert record["exc_actual_version"] == 2

    def test_billing_values_serialized(self, json_logs):
        entry_id = uuid4()
        get_logger("test").info(
            "typed_values",
            extra={
                "entry_id": entry_id,
                "hours": Decimal("7.50"),
                "period_start": date(2026, 3, 1),
                "billing_type": BillingType.OVERTIME,
                "fixed_fee_agreement_ids": ("a", "b"),
            },
        )

        record = json_logs.last()
        assert record["entry_id"] == str(entry_id)
        assert record["hours"] == "7.50"
        assert record["period_start"] == "2026-03-01"
        assert record["billing_type"] == "overtime"
        assert record["fixed_fee_agreement_ids"] == ["a", "b"]

    def test_default_level_drops_debug(self, json_logs):
        logger = get_logger("test")
        logger.debug("dropped")
        logger.info("kept")
        logger.warning("kept_too")
        assert [r["message"] for r in json_logs.records()] == ["kept", "kept_too"]

    def test_formatter_usable_on_foreign_handler(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        record = logging.LogRecord("other", logging.INFO, __file__, 1, "hi %s", ("there",), None)
        handler.emit(record)
        assert json.loads(stream.getvalue())["message"] == "hi there"


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", agreement_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "agreement_id": "y"}

    def test_set_is_additive(self):
        LogContext.set(correlation_id="a")
        LogContext.set(customer_id="b", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "a", "customer_id": "b"}

    def test_clear(self):
        LogContext.set(**{name: name for name in CONTEXT_FIELDS})
        assert len(LogContext.get_all()) == len(CONTEXT_FIELDS)
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_bind_restores_unset(self):
        with LogContext.bind(batch_id="temp"):
            assert LogContext.get_all()["batch_id"] == "temp"
        assert "batch_id" not in LogContext.get_all()

    def test_nested_binds_unwind(self):
        with LogContext.bind(customer_id="c1"):
            with LogContext.bind(customer_id="c2", agreement_id="a"):
                assert LogContext.get_all() == {"customer_id": "c2", "agreement_id": "a"}
            assert LogContext.get_all() == {"customer_id": "c1"}
        assert LogContext.get_all() == {}

    def test_bind_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(batch_id="b"):
                raise RuntimeError("x")
        assert LogContext.get_all() == {}

    def test_bind_stringifies_uuid(self):
        uid = uuid4()
        with LogContext.bind(actor_id=uid):
            assert LogContext.get_all()["actor_id"] == str(uid)

    def test_unknown_fields_ignored(self):
        LogContext.set(producer="p")
        with LogContext.bind(producer="p", customer_id="c"):
            assert LogContext.get_all() == {"customer_id": "c"}


class TestConfigureLogging:
    def test_idempotent(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("billing_kernel").handlers) == 1

    def test_child_logger_name(self):
        assert get_logger("services.timebank").name == "billing_kernel.services.timebank"

    def test_children_share_handler(self):
        capture = _Capture(level=logging.DEBUG)
        get_logger("engines.timebank").debug("timebank_status_calculated")

        record = capture.last()
        assert record["logger"] == "billing_kernel.engines.timebank"

    def test_does_not_propagate_to_root(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert logging.getLogger("billing_kernel").propagate is False

    def test_reset_allows_reconfiguration(self):
        first = _Capture()
        reset_logging()
        second = _Capture()
        get_logger("test").info("after_reset")
        assert first.records() == []
        assert second.last()["message"] == "after_reset"
