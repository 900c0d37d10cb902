"""
Error taxonomy for the ledger sync service.

User-visible errors (ValidationError, AuthenticationError) are mapped to HTTP
responses by the webhook app. Everything else is raised inside background
reconciliation tasks, where it is logged and counted but never reported back
to the notifier.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all ledger sync errors."""


class ValidationError(SyncError):
    """Inbound request failed input validation (unknown webhook type)."""

    status_code = 400


class AuthenticationError(SyncError):
    """Inbound request carried a MAC that does not match the body."""

    status_code = 403


class FetchFailed(SyncError):
    """Reading desired or committed state from a store failed."""

    def __init__(self, collection: str, source: str, message: str):
        self.collection = collection
        self.source = source
        super().__init__(f"Failed to fetch {collection} from {source}: {message}")


class TransientRemoteError(SyncError):
    """
    Remote call failed in a way that may succeed on retry.

    Raised for connection resets, timeouts and rate limiting (HTTP 429).
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CommitError(SyncError):
    """Ledger rejected the write. Never retried."""

    def __init__(self, message: str, transaction_hash: Optional[str] = None):
        self.transaction_hash = transaction_hash
        super().__init__(message)


class PollExhausted(SyncError):
    """Transaction outcome did not finalize within the polling budget."""

    def __init__(self, transaction_hash: str, attempts: int):
        self.transaction_hash = transaction_hash
        self.attempts = attempts
        super().__init__(
            f"Transaction {transaction_hash} not finalized after {attempts} polling attempts"
        )


class RpcError(SyncError):
    """Ledger JSON-RPC endpoint answered with an error object."""

    def __init__(self, name: str, cause: Optional[str] = None, data: Optional[dict] = None):
        self.name = name
        self.cause = cause
        self.data = data or {}
        detail = f"{name}: {cause}" if cause else name
        super().__init__(f"RPC error {detail}")
