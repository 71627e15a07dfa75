"""
Tests for Logging Infrastructure
"""
import pytest
import json
import logging
from io import StringIO

from app.core.logging import (
    setup_logging,
    get_logger,
    set_correlation_id,
    get_correlation_id,
    generate_correlation_id,
    correlation_id_var,
    CorrelationIdFilter,
    JSONFormatter,
    log_async_operation
)


class TestCorrelationId:
    """Tests for correlation ID management"""

    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()

        assert cid is not None
        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get_correlation_id(self):
        test_id = "test1234"
        result = set_correlation_id(test_id)

        assert result == test_id
        assert get_correlation_id() == test_id

    @pytest.mark.unit
    def test_set_correlation_id_generates_if_none(self):
        result = set_correlation_id(None)

        assert result is not None
        assert len(result) == 8

    @pytest.mark.unit
    def test_get_correlation_id_persists_generated_value(self):
        token = correlation_id_var.set("")
        try:
            first = get_correlation_id()
            assert first
            assert get_correlation_id() == first
        finally:
            correlation_id_var.reset(token)


class TestJSONFormatter:
    """Tests for JSON log formatting"""

    @pytest.fixture
    def log_stream(self) -> StringIO:
        return StringIO()

    @pytest.fixture
    def json_handler(self, log_stream: StringIO) -> logging.Handler:
        handler = logging.StreamHandler(log_stream)
        handler.setFormatter(JSONFormatter())
        return handler

    @pytest.mark.unit
    def test_json_format_basic(self, log_stream: StringIO, json_handler: logging.Handler):
        logger = logging.getLogger("test_json_basic")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Test message")

        log_entry = json.loads(log_stream.getvalue())

        assert log_entry["level"] == "INFO"
        assert log_entry["message"] == "Test message"
        assert log_entry["app"] == "fleet-bot"
        assert "timestamp" in log_entry
        assert log_entry["logger"] == "test_json_basic"

    @pytest.mark.unit
    def test_json_format_with_correlation_id(
        self,
        log_stream: StringIO,
        json_handler: logging.Handler
    ):
        set_correlation_id("testcorr")

        logger = logging.getLogger("test_json_corr")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("Correlated message")

        log_entry = json.loads(log_stream.getvalue())

        assert log_entry.get("correlation_id") == "testcorr"

    @pytest.mark.unit
    def test_json_format_with_exception(
        self,
        log_stream: StringIO,
        json_handler: logging.Handler
    ):
        logger = logging.getLogger("test_json_exc")
        logger.addHandler(json_handler)
        logger.setLevel(logging.ERROR)

        try:
            raise ValueError("Test error")
        except ValueError:
            logger.error("Error occurred", exc_info=True)

        log_entry = json.loads(log_stream.getvalue())

        assert log_entry["level"] == "ERROR"
        assert "ValueError" in log_entry["exception"]

    @pytest.mark.unit
    def test_hebrew_is_not_escaped(self, log_stream: StringIO, json_handler: logging.Handler):
        logger = get_logger("test.hebrew")
        logger.addHandler(json_handler)
        logger.setLevel(logging.INFO)

        logger.info("קילומטראז' עודכן")

        assert "קילומטראז' עודכן" in log_stream.getvalue()


class TestStructuredLogger:
    """Tests for structured logger functionality"""

    @pytest.mark.unit
    def test_get_logger(self):
        logger = get_logger("test.module")

        assert logger.name == "test.module"

    @pytest.mark.unit
    def test_logger_with_extra_data(self):
        log_stream = StringIO()
        handler = logging.StreamHandler(log_stream)
        handler.setFormatter(JSONFormatter())

        logger = get_logger("test.extra")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

        logger.info("Mileage reported", extra_data={"motorcycle_id": 7, "mileage": 15200})

        log_entry = json.loads(log_stream.getvalue())

        assert log_entry["extra"] == {"motorcycle_id": 7, "mileage": 15200}
        assert log_entry["function"] == "test_logger_with_extra_data"


class TestSetupLogging:

    @pytest.mark.unit
    def test_plain_format_uses_correlation_filter(self):
        root = logging.getLogger()
        previous_handlers = list(root.handlers)
        previous_level = root.level
        try:
            setup_logging(level="DEBUG", json_format=False)

            handler = root.handlers[0]
            assert root.level == logging.DEBUG
            assert any(isinstance(f, CorrelationIdFilter) for f in handler.filters)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = previous_handlers
            root.setLevel(previous_level)

    @pytest.mark.unit
    def test_correlation_filter_defaults_to_dash(self):
        token = correlation_id_var.set("")
        try:
            record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
            assert CorrelationIdFilter().filter(record) is True
            assert record.correlation_id == "-"
        finally:
            correlation_id_var.reset(token)


class TestAsyncLoggingDecorator:
    """Tests for async operation logging decorator"""

    @pytest.mark.unit
    async def test_log_async_operation_success(self):
        @log_async_operation("test_operation")
        async def success_func():
            return "success"

        assert await success_func() == "success"
        assert success_func.__name__ == "success_func"

    @pytest.mark.unit
    async def test_log_async_operation_failure(self):
        @log_async_operation("failing_operation")
        async def failing_func():
            raise ValueError("Test failure")

        with pytest.raises(ValueError):
            await failing_func()
