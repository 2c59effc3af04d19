"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from otel_bugsnag.core.logging import (
    _NOISE_LOGGERS,
    _service_context,
    add_otel_context,
    add_service_context,
    configure_logging,
    get_service_context,
    set_service_context,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and service context between tests."""
    token = _service_context.set(None)
    yield
    _service_context.reset(token)
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# ContextVar accessors
# ---------------------------------------------------------------------------


class TestServiceContext:
    def test_set_and_get(self):
        set_service_context("checkout")
        assert get_service_context() == "checkout"

    def test_default_is_none(self):
        assert get_service_context() is None


# ---------------------------------------------------------------------------
# add_service_context processor
# ---------------------------------------------------------------------------


class TestAddServiceContext:
    def test_injects_service_name(self):
        set_service_context("payments")
        result = add_service_context(None, "info", {"event": "test"})
        assert result["service"] == "payments"

    def test_handles_unset_context(self):
        result = add_service_context(None, "info", {"event": "test"})
        assert result["service"] is None


# ---------------------------------------------------------------------------
# add_otel_context processor
# ---------------------------------------------------------------------------


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span") as span:
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] == format(span.get_span_context().trace_id, "032x")
            assert result["span_id"] == format(span.get_span_context().span_id, "016x")
        provider.shutdown()


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(handler.formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(handler.formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_sets_service_context(self):
        configure_logging(service_name="checkout")
        assert get_service_context() == "checkout"

    def test_noise_loggers_suppressed(self):
        configure_logging()
        assert logging.getLogger("httpx").level >= logging.WARNING
        assert logging.getLogger("httpcore").level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="CHATTY")
        assert logging.getLogger().level == logging.INFO

    def test_reconfiguration_replaces_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


# ---------------------------------------------------------------------------
# Log file
# ---------------------------------------------------------------------------


class TestLogFile:
    def test_creates_parent_directories(self, tmp_path: Path):
        log_file = tmp_path / "nested" / "otel-bugsnag.log"
        configure_logging(log_file=log_file)
        assert log_file.parent.is_dir()

    def test_file_records_are_json(self, tmp_path: Path):
        log_file = tmp_path / "otel-bugsnag.log"
        configure_logging(log_file=log_file, service_name="checkout")

        logging.getLogger("otel_bugsnag.test").warning("delivery failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["event"] == "delivery failed"
        assert record["level"] == "warning"
        assert record["service"] == "checkout"
        assert record["logger"] == "otel_bugsnag.test"
        assert "trace_id" in record
