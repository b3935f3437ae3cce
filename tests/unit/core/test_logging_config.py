"""
Tests for logging infrastructure.
"""

import logging
import json
import sys

import pytest

from localblob.core.logging_config import (
    setup_logging,
    get_logger,
    set_correlation_id,
    clear_correlation_id,
    correlation_id,
    log_with_context,
    JSONFormatter,
    SensitiveDataFilter,
    _parse_size
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging replaces root handlers; put the originals back afterwards."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


def make_record(msg, level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=exc_info
    )


class TestLoggingSetup:
    """Test suite for logging setup."""

    def test_setup_logging_defaults(self):
        """Test setting up logging with defaults."""
        setup_logging()

        root_logger = logging.getLogger()
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    def test_setup_logging_with_level(self):
        """Test setting up logging with custom level."""
        setup_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_text_format(self):
        """Test that the text format does not use the JSON formatter."""
        setup_logging(format_type="text")

        handler = logging.getLogger().handlers[0]
        assert not isinstance(handler.formatter, JSONFormatter)

    def test_setup_logging_with_file(self, tmp_path):
        """Test setting up logging with file output."""
        log_file = tmp_path / "logs" / "localblob.log"
        setup_logging(log_file=str(log_file))

        logger = get_logger(__name__)
        logger.info("Test message")

        assert log_file.exists()
        assert "Test message" in log_file.read_text()

    def test_file_output_is_redacted(self, tmp_path):
        """Test that file output passes through the redaction filter."""
        log_file = tmp_path / "localblob.log"
        setup_logging(log_file=str(log_file))

        get_logger("test.redaction").info("token sv=2021-08-06&sig=abcdef123 issued")

        content = log_file.read_text()
        assert "abcdef123" not in content
        assert "***REDACTED***" in content

    def test_setup_logging_with_module_levels(self):
        """Test setting up logging with per-module log levels."""
        setup_logging(
            level="INFO",
            module_levels={
                "localblob.services.blob.leases": "DEBUG",
                "localblob.services.blob.store": "ERROR"
            }
        )

        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("localblob.services.blob.leases").level == logging.DEBUG
        assert logging.getLogger("localblob.services.blob.store").level == logging.ERROR

        logging.getLogger("localblob.services.blob.leases").setLevel(logging.NOTSET)
        logging.getLogger("localblob.services.blob.store").setLevel(logging.NOTSET)


class TestJSONFormatter:
    """Test suite for JSON formatter."""

    def test_format_basic_message(self):
        """Test formatting a basic log message."""
        data = json.loads(JSONFormatter().format(make_record("Test message")))

        assert data["level"] == "INFO"
        assert data["module"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "correlation_id" not in data

    def test_format_with_correlation_id(self):
        """Test formatting with correlation ID."""
        set_correlation_id("test-correlation-id")

        try:
            data = json.loads(JSONFormatter().format(make_record("Test message")))
            assert data["correlation_id"] == "test-correlation-id"
        finally:
            clear_correlation_id()

    def test_format_with_context(self):
        """Test that structured context is emitted."""
        record = make_record("Retrying")
        record.context = {"operation_name": "download_blob", "attempt": 2}

        data = json.loads(JSONFormatter().format(record))

        assert data["context"] == {"operation_name": "download_blob", "attempt": 2}

    def test_format_with_exception(self):
        """Test formatting with exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", level=logging.ERROR, exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert "ValueError" in data["exception"]
        assert "Test error" in data["exception"]


class TestSensitiveDataFilter:
    """Test suite for sensitive data filter."""

    def test_redact_account_key_in_connection_string(self):
        """Test redacting account key from connection string."""
        record = make_record("DefaultEndpointsProtocol=http;AccountName=dev;AccountKey=secretkey123;")

        assert SensitiveDataFilter().filter(record) is True

        assert "secretkey123" not in record.msg
        assert "AccountName=dev" in record.msg
        assert "***REDACTED***" in record.msg

    def test_redact_account_key_field(self):
        """Test redacting an account_key assignment."""
        record = make_record('account_key="c2VjcmV0"')

        SensitiveDataFilter().filter(record)

        assert "c2VjcmV0" not in record.msg
        assert "***REDACTED***" in record.msg

    def test_redact_sas_signature(self):
        """Test redacting SAS signature."""
        record = make_record("?sv=2021-08-06&sig=base64signature&se=2026-12-31")

        SensitiveDataFilter().filter(record)

        assert "base64signature" not in record.msg
        assert "se=2026-12-31" in record.msg

    def test_plain_message_unchanged(self):
        """Test that messages without secrets pass through untouched."""
        record = make_record("Created container photos")

        SensitiveDataFilter().filter(record)

        assert record.msg == "Created container photos"


class TestCorrelationId:
    """Test suite for correlation ID management."""

    def test_set_and_get_correlation_id(self):
        """Test setting and getting correlation ID."""
        set_correlation_id("test-id-123")
        assert correlation_id.get() == "test-id-123"

        clear_correlation_id()
        assert correlation_id.get() is None

    def test_log_with_context(self, tmp_path):
        """Test that context fields reach the JSON output."""
        log_file = tmp_path / "context.log"
        setup_logging(format_type="json", log_file=str(log_file))
        logger = get_logger("test.context")

        log_with_context(
            logger,
            logging.INFO,
            "Operation failed, retrying",
            operation_name="get_blob_properties",
            attempt=1
        )

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        entry = next(line for line in lines if line["message"] == "Operation failed, retrying")
        assert entry["context"] == {"operation_name": "get_blob_properties", "attempt": 1}


class TestParseSize:
    """Test suite for size parsing."""

    def test_parse_bytes(self):
        """Test parsing bytes."""
        assert _parse_size("100") == 100
        assert _parse_size("100B") == 100

    def test_parse_units(self):
        """Test parsing kilobytes, megabytes and gigabytes."""
        assert _parse_size("10KB") == 10240
        assert _parse_size("10MB") == 10485760
        assert _parse_size("1GB") == 1073741824

    def test_parse_lowercase_and_whitespace(self):
        """Test parsing with lowercase units and whitespace."""
        assert _parse_size("5kb") == 5120
        assert _parse_size(" 10 MB ") == 10485760

    def test_parse_decimal(self):
        """Test parsing decimal values."""
        assert _parse_size("1.5MB") == int(1.5 * 1048576)
