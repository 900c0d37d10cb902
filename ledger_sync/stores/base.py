"""
Store interfaces used by the reconciler.

TableStore supplies the desired records for a collection. LedgerStore
supplies the committed records and accepts commits. Both are asynchronous;
blocking HTTP adapters push their I/O onto worker threads.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

Record = Dict[str, Any]


@dataclass
class CommitOutcome:
    """
    Result of a ledger commit.

    Attributes:
        success: Whether the ledger accepted the write
        transaction_hash: Handle usable for status polling
        success_value: Decoded return value of the contract call
        logs: Execution logs emitted by the call
    """

    success: bool
    transaction_hash: Optional[str] = None
    success_value: Optional[str] = None
    logs: List[str] = field(default_factory=list)


class TableStore(Protocol):
    async def fetch_records(self, collection: str) -> List[Record]:
        ...


class LedgerStore(Protocol):
    async def fetch_committed(self, collection: str) -> Any:
        """Committed records, either decoded or as a JSON-encoded string."""
        ...

    async def commit(self, collection: str, records: List[Record]) -> CommitOutcome:
        ...
