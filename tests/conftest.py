"""
Pytest configuration and shared fixtures.

Provides in-memory table and ledger stores, a frozen clock and webhook
secrets so unit and integration tests run without network access.
"""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from ledger_sync.config import CollectionConfig, SyncSettings
from ledger_sync.errors import FetchFailed
from ledger_sync.monitoring.metrics import SyncMetrics
from ledger_sync.stores.base import CommitOutcome

AGENDA_SECRET = b"agenda-shared-secret"
ALERTS_SECRET = b"alerts-shared-secret"


class FakeTableStore:
    """Desired-state provider backed by a dict."""

    def __init__(self, records=None):
        self.records = records or {}
        self.calls = 0
        self.error = None
        self.gate = None

    async def fetch_records(self, collection):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if collection not in self.records:
            raise FetchFailed(collection, "table", "collection is not configured")
        return [dict(r) for r in self.records[collection]]


class FakeLedgerStore:
    """Ledger that keeps committed state as JSON strings, like the contract view."""

    def __init__(self, committed=None):
        self.committed = {
            key: json.dumps(records) for key, records in (committed or {}).items()
        }
        self.commits = []
        self.commit_errors = []
        self.fetch_error = None
        self.commit_gate = None
        self.commit_started = asyncio.Event()

    async def fetch_committed(self, collection):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.committed.get(collection)

    async def commit(self, collection, records):
        self.commit_started.set()
        if self.commit_gate is not None:
            await self.commit_gate.wait()
        if self.commit_errors:
            raise self.commit_errors.pop(0)
        self.commits.append((collection, [dict(r) for r in records]))
        self.committed[collection] = json.dumps(records)
        return CommitOutcome(success=True, transaction_hash=f"tx-{len(self.commits)}")

    def committed_records(self, collection):
        raw = self.committed.get(collection)
        return json.loads(raw) if raw else []


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


async def _no_sleep(seconds):
    await asyncio.sleep(0)


@pytest.fixture
def no_sleep():
    """Awaitable sleep that only yields to the loop."""
    return _no_sleep


@pytest.fixture
def table_store():
    return FakeTableStore()


@pytest.fixture
def ledger_store():
    return FakeLedgerStore()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def metrics():
    return SyncMetrics()


@pytest.fixture
def mac_secrets():
    """Raw secret bytes per collection."""
    return {"agenda": AGENDA_SECRET, "alerts": ALERTS_SECRET}


@pytest.fixture
def mac_secrets_b64(mac_secrets):
    """Secrets as they appear in configuration."""
    return {key: base64.b64encode(value).decode("ascii") for key, value in mac_secrets.items()}


@pytest.fixture
def settings(mac_secrets_b64):
    """Settings with both default collections and store endpoints filled in."""
    return SyncSettings(
        collections={
            "agenda": CollectionConfig(key="agenda", table="Agenda", mac_secret=mac_secrets_b64["agenda"]),
            "alerts": CollectionConfig(key="alerts", table="Alerts", mac_secret=mac_secrets_b64["alerts"]),
        },
        airtable_base_id="appTEST",
        airtable_token="pat-test",
        contract_id="factory.testnet",
        signer_url="http://signer.test/sign",
        signer_token="signer-token",
    )
