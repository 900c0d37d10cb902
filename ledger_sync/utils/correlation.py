"""
Correlation IDs for Ledger Sync

A webhook request and the background reconciliation it schedules share one
correlation ID. The ID lives in a context variable, so each asyncio task
carries its own copy, and a logging filter stamps it onto every record.
"""

import uuid
import contextvars
from typing import Mapping, Optional
import logging

CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Bind a correlation ID to the current context.

    Raises:
        ValueError: If correlation_id is not a non-empty string
    """
    if not correlation_id or not isinstance(correlation_id, str):
        raise ValueError("Correlation ID must be a non-empty string")

    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationContext:
    """
    Bind a correlation ID for the duration of a block.

    The previous binding is restored on exit. A missing ID is replaced by a
    freshly generated one, which ``__enter__`` returns.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self) -> str:
        self.correlation_id = self.correlation_id or generate_correlation_id()
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


def correlation_id_filter(record):
    """Logging filter that adds ``correlation_id`` (or "N/A") to the record."""
    record.correlation_id = get_correlation_id() or "N/A"
    return True


def setup_correlation_logging(handler: logging.Handler) -> None:
    handler.addFilter(correlation_id_filter)


def extract_correlation_id_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    """
    Caller-supplied correlation ID, if any.

    Checks ``X-Request-ID`` first, then ``X-Correlation-ID``. Blank values
    are ignored.
    """
    if headers is None:
        return None

    for name in CORRELATION_HEADERS:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()

    return None
