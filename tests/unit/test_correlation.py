"""
Unit tests for correlation module.
"""

import logging
import uuid

import pytest

from ledger_sync.utils.correlation import (
    CorrelationContext,
    clear_correlation_id,
    correlation_id_filter,
    extract_correlation_id_from_headers,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
    setup_correlation_logging,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_correlation_id()
    yield
    clear_correlation_id()


class TestCorrelationIds:
    """Test correlation ID generation and context storage."""

    def test_generated_id_is_uuid4(self):
        correlation_id = generate_correlation_id()

        assert uuid.UUID(correlation_id).version == 4

    def test_generated_ids_are_unique(self):
        assert len({generate_correlation_id() for _ in range(10)}) == 10

    def test_unset_by_default(self):
        assert get_correlation_id() is None

    def test_set_and_clear(self):
        set_correlation_id("req-42")
        assert get_correlation_id() == "req-42"

        clear_correlation_id()
        assert get_correlation_id() is None

    @pytest.mark.parametrize("value", ["", None, 12345])
    def test_invalid_ids_rejected(self, value):
        with pytest.raises(ValueError, match="non-empty string"):
            set_correlation_id(value)


class TestCorrelationContext:
    """Test CorrelationContext context manager."""

    def test_generates_id_and_clears_on_exit(self):
        with CorrelationContext() as correlation_id:
            assert get_correlation_id() == correlation_id

        assert get_correlation_id() is None

    def test_restores_outer_id(self):
        with CorrelationContext("webhook-request"):
            with CorrelationContext("reconcile-task") as inner:
                assert get_correlation_id() == inner == "reconcile-task"
            assert get_correlation_id() == "webhook-request"

    def test_none_generates_fresh_id(self):
        with CorrelationContext(None) as correlation_id:
            assert uuid.UUID(correlation_id)


class TestHeaders:
    """Test correlation ID extraction from request headers."""

    def test_request_id_header(self):
        assert extract_correlation_id_from_headers({"X-Request-ID": "abc"}) == "abc"

    def test_correlation_id_header(self):
        assert extract_correlation_id_from_headers({"X-Correlation-ID": " def "}) == "def"

    def test_request_id_preferred(self):
        headers = {"X-Request-ID": "first", "X-Correlation-ID": "second"}

        assert extract_correlation_id_from_headers(headers) == "first"

    def test_blank_or_missing(self):
        assert extract_correlation_id_from_headers({"X-Request-ID": "  "}) is None
        assert extract_correlation_id_from_headers({}) is None
        assert extract_correlation_id_from_headers(None) is None


class TestLoggingFilter:
    """Test log record augmentation."""

    def _record(self):
        return logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)

    def test_filter_adds_current_id(self):
        record = self._record()

        with CorrelationContext("req-7"):
            assert correlation_id_filter(record) is True

        assert record.correlation_id == "req-7"

    def test_filter_without_id(self):
        record = self._record()

        correlation_id_filter(record)

        assert record.correlation_id == "N/A"

    def test_setup_installs_filter(self):
        handler = logging.NullHandler()

        setup_correlation_logging(handler)

        assert correlation_id_filter in handler.filters
