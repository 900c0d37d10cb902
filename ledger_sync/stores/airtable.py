"""
Airtable table store.

Reads every record of a collection's table (following Airtable's ``offset``
pagination) and returns each record's ``fields`` mapping in view order.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import requests

from ledger_sync.config import CollectionConfig
from ledger_sync.errors import FetchFailed, TransientRemoteError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class AirtableTableStore:
    """Desired-state provider backed by the Airtable REST API."""

    def __init__(
        self,
        base_id: str,
        token: str,
        collections: Mapping[str, CollectionConfig],
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the store.

        Args:
            base_id: Airtable base identifier
            token: Personal access token
            collections: Collection configs (table and view per key)
            api_url: API root
            timeout: Per-request timeout in seconds
            session: requests session (a new one if not provided)

        Raises:
            ValueError: If base_id or token is missing
        """
        if not base_id:
            raise ValueError("Airtable base id must be provided via config or AIRTABLE_BASE_ID")
        if not token:
            raise ValueError("Airtable token must be provided via config or AIRTABLE_PERSONAL_ACCESS_TOKEN")

        self.base_id = base_id
        self.collections = dict(collections)
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    async def fetch_records(self, collection: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.fetch_records_sync, collection)

    def fetch_records_sync(self, collection: str) -> List[Dict[str, Any]]:
        """
        Fetch all records of a collection.

        Raises:
            FetchFailed: Unknown collection or a non-transient API error
            TransientRemoteError: Timeouts, connection errors, 429 and 5xx
        """
        config = self.collections.get(collection)
        if config is None:
            raise FetchFailed(collection, "table", "collection is not configured")

        url = f"{self.api_url}/{self.base_id}/{quote(config.table, safe='')}"
        params = {"view": config.view}
        records: List[Dict[str, Any]] = []
        pages = 0

        while True:
            page = self._get_page(collection, url, params)
            pages += 1
            records.extend(item.get("fields", {}) for item in page.get("records", []))

            offset = page.get("offset")
            if not offset:
                break
            params = {"view": config.view, "offset": offset}

        logger.info(f"Fetched {len(records)} {collection} records from Airtable in {pages} page(s)")
        return records

    def _get_page(self, collection: str, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientRemoteError(f"Airtable request failed: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientRemoteError(
                f"Airtable returned HTTP {response.status_code}",
                status_code=response.status_code
            )
        if response.status_code != 200:
            raise FetchFailed(
                collection,
                "table",
                f"Airtable returned HTTP {response.status_code}: {response.text[:200]}"
            )

        return response.json()
