"""
Reconciler for Ledger Sync

Fetches the desired state from the table store and the committed state from
the ledger, decides whether they differ and, if so, builds the next state.
No writes happen here; committing is the scheduler's job.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime

from ledger_sync.errors import FetchFailed
from ledger_sync.reconciliation.comparer import StateComparer
from ledger_sync.reconciliation.differ import StateDiffer
from ledger_sync.reconciliation.merger import StateMerger, TIME_FIELD
from ledger_sync.stores.base import LedgerStore, Record, TableStore

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    collection: str
    changed: bool
    next_state: List[Record] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)


def decode_committed(collection: str, payload: Any) -> List[Record]:
    """
    Decode the ledger's committed state into a record list.

    The ledger returns its state as a JSON-encoded string; an absent or empty
    value means nothing has been committed yet.

    Raises:
        FetchFailed: If the payload is not a list of mappings
    """
    if payload is None:
        return []

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")

    if isinstance(payload, str):
        if not payload.strip():
            return []
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise FetchFailed(collection, "ledger", f"committed state is not valid JSON: {e}") from e

    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise FetchFailed(collection, "ledger", "committed state is not a list of records")

    return payload


class Reconciler:
    """
    Computes whether a collection needs a commit and what to commit.

    Example:
        reconciler = Reconciler(table_store, ledger_store)
        result = await reconciler.reconcile("agenda")
        if result.changed:
            await ledger_store.commit("agenda", result.next_state)
    """

    def __init__(
        self,
        table_store: TableStore,
        ledger_store: LedgerStore,
        key_fields: Optional[Dict[str, str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        comparer: Optional[StateComparer] = None,
        metrics=None
    ):
        """
        Initialize the reconciler.

        Args:
            table_store: Desired-state provider
            ledger_store: Committed-state provider
            key_fields: Identifier field per collection; collections not
                listed are merged by position
            clock: Time source for new stamps
            comparer: Comparer used for equality checks
            metrics: Optional SyncMetrics
        """
        self.table_store = table_store
        self.ledger_store = ledger_store
        self.key_fields = dict(key_fields or {})
        self.comparer = comparer or StateComparer()
        self.differ = StateDiffer(self.comparer)
        self.merger = StateMerger(clock=clock, differ=self.differ)
        self.metrics = metrics

    async def fetch_both(self, collection: str) -> Tuple[List[Record], List[Record]]:
        """
        Fetch desired and committed state concurrently.

        Raises:
            FetchFailed: If either store fails
        """
        desired, committed = await asyncio.gather(
            self._fetch_desired(collection),
            self._fetch_committed(collection)
        )
        logger.info(
            f"Fetched {collection}: {len(desired)} desired, {len(committed)} committed records"
        )
        return desired, committed

    async def reconcile(self, collection: str) -> ReconciliationResult:
        """
        Diff desired and committed state for a collection.

        Returns:
            ReconciliationResult with ``changed`` and ``next_state``

        Raises:
            FetchFailed: If either store fails
        """
        desired, committed = await self.fetch_both(collection)

        if self.comparer.states_equal(desired, committed):
            logger.info(f"{collection} is in sync; nothing to commit")
            return ReconciliationResult(
                collection=collection,
                changed=False,
                next_state=committed,
                summary={"added": 0, "removed": 0, "changed": 0, "unchanged": len(desired)}
            )

        key_field = self.key_fields.get(collection)
        next_state = self.merger.merge(desired, committed, key_field=key_field)

        # Desired rows never carry the stamp, so compare after merging
        if self.comparer.states_equal(next_state, committed):
            logger.info(f"{collection} differs only by existing {TIME_FIELD} stamps; nothing to commit")
            return ReconciliationResult(
                collection=collection,
                changed=False,
                next_state=committed,
                summary={"added": 0, "removed": 0, "changed": 0, "unchanged": len(desired)}
            )

        summary = self.differ.summarize(
            desired,
            committed,
            key_field=key_field,
            ignore_fields=[TIME_FIELD]
        )
        if self.metrics:
            self.metrics.record_discrepancies(collection, summary)

        logger.info(
            f"{collection} needs a commit: {summary['added']} added, "
            f"{summary['removed']} removed, {summary['changed']} changed"
        )

        return ReconciliationResult(
            collection=collection,
            changed=True,
            next_state=next_state,
            summary=summary
        )

    async def _fetch_desired(self, collection: str) -> List[Record]:
        try:
            records = await self.table_store.fetch_records(collection)
        except FetchFailed:
            raise
        except Exception as e:
            logger.error(f"Table store fetch failed for {collection}: {e}")
            raise FetchFailed(collection, "table", str(e)) from e
        return list(records or [])

    async def _fetch_committed(self, collection: str) -> List[Record]:
        try:
            payload = await self.ledger_store.fetch_committed(collection)
        except FetchFailed:
            raise
        except Exception as e:
            logger.error(f"Ledger fetch failed for {collection}: {e}")
            raise FetchFailed(collection, "ledger", str(e)) from e
        return decode_committed(collection, payload)
