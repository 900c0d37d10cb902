"""
Retry Utility for Ledger Sync

Wraps a remote call with bounded exponential backoff. Only transient failures
(connection resets, timeouts, HTTP 429) are retried; anything else is raised
on the first attempt.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import requests

from ledger_sync.errors import TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429}


def is_retryable(error: BaseException) -> bool:
    """
    Classify an error as transient.

    Args:
        error: Exception raised by the operation

    Returns:
        True for connection resets, timeouts and rate limiting
    """
    if isinstance(error, TransientRemoteError):
        return True

    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True

    if isinstance(error, requests.exceptions.HTTPError):
        response = error.response
        return response is not None and response.status_code in RETRYABLE_STATUS_CODES

    if isinstance(error, (ConnectionResetError, ConnectionAbortedError, TimeoutError, asyncio.TimeoutError)):
        return True

    return False


class RetryExecutor:
    """
    Runs async operations with exponential backoff.

    Example:
        executor = RetryExecutor(max_attempts=5, initial_delay=1.0)
        outcome = await executor.retry(lambda: ledger.commit("agenda", records))
    """

    def __init__(
        self,
        max_attempts: int = 5,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        metrics=None
    ):
        """
        Initialize the executor.

        Args:
            max_attempts: Total attempts including the first
            initial_delay: Seconds to wait before the first retry
            max_delay: Upper bound for any single wait
            jitter: Fraction of the delay added at random (0 disables)
            sleep: Awaitable sleep function
            metrics: Optional SyncMetrics
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if initial_delay < 0 or max_delay < 0:
            raise ValueError("Retry delays must be non-negative")

        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.sleep = sleep or asyncio.sleep
        self.metrics = metrics

    def compute_delay(self, attempt: int, initial_delay: Optional[float] = None) -> float:
        """
        Delay before retry number ``attempt`` (1-based).

        Doubles per attempt and never exceeds ``max_delay`` before jitter.
        """
        base = self.initial_delay if initial_delay is None else initial_delay
        delay = min(base * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        label: str = "operation"
    ) -> T:
        """
        Invoke ``operation`` until it succeeds or retries are exhausted.

        Args:
            operation: Zero-argument callable returning an awaitable
            max_attempts: Overrides the executor default
            initial_delay: Overrides the executor default
            label: Name used in logs and metrics

        Returns:
            The operation's result

        Raises:
            The last error once attempts are exhausted, or the first
            non-retryable error immediately
        """
        attempts = max_attempts or self.max_attempts

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    logger.error(f"{label} failed with non-retryable error: {e}")
                    raise

                if attempt >= attempts:
                    logger.error(f"{label} failed after {attempt} attempts: {e}")
                    raise

                delay = self.compute_delay(attempt, initial_delay)
                logger.warning(
                    f"{label} attempt {attempt}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                if self.metrics:
                    self.metrics.record_retry(label)
                await self.sleep(delay)
