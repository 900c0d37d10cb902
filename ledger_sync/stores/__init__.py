from ledger_sync.stores.base import CommitOutcome, LedgerStore, Record, TableStore
from ledger_sync.stores.airtable import AirtableTableStore
from ledger_sync.stores.near import NearLedgerStore

__all__ = [
    "CommitOutcome",
    "LedgerStore",
    "Record",
    "TableStore",
    "AirtableTableStore",
    "NearLedgerStore",
]
