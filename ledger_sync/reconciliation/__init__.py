"""
Reconciliation Module for Ledger Sync

This module decides whether a collection's desired records (table store)
differ from its committed records (ledger) and builds the next state.

Main components:
- comparer: Canonical deep equality
- differ: Added/removed/changed summaries
- merger: Next-state construction with Time stamp preservation
- reconciler: Fetch both stores, compare, merge

Usage:
    from ledger_sync.reconciliation import Reconciler

    reconciler = Reconciler(table_store, ledger_store)
    result = await reconciler.reconcile("agenda")
    if result.changed:
        await ledger_store.commit("agenda", result.next_state)
"""

from ledger_sync.reconciliation.comparer import StateComparer
from ledger_sync.reconciliation.differ import StateDiffer
from ledger_sync.reconciliation.merger import StateMerger, TIME_FIELD
from ledger_sync.reconciliation.reconciler import Reconciler, ReconciliationResult

__all__ = [
    "StateComparer",
    "StateDiffer",
    "StateMerger",
    "TIME_FIELD",
    "Reconciler",
    "ReconciliationResult",
]
