"""
NEAR ledger store.

Committed state is read with a JSON-RPC ``call_function`` view on the
factory contract (``get_agenda``, ``get_alerts``). Commits are handed to a
signing gateway, which builds, signs and submits the function-call
transaction and answers with the final execution outcome. When the gateway
reports a timeout together with a transaction hash, the outcome is polled
from the RPC node until it finalizes or the polling budget runs out.
"""

import asyncio
import base64
import json
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from ledger_sync.config import CollectionConfig
from ledger_sync.errors import (
    CommitError,
    FetchFailed,
    PollExhausted,
    RpcError,
    SyncError,
    TransientRemoteError,
)
from ledger_sync.stores.base import CommitOutcome, Record

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
TIMEOUT_ERROR = "TIMEOUT_ERROR"


def parse_execution_outcome(result: Optional[Dict[str, Any]]) -> CommitOutcome:
    """
    Turn a final execution outcome into a CommitOutcome.

    Raises:
        CommitError: If the outcome is missing or the transaction failed
    """
    if not result:
        raise CommitError("No result received for transaction")

    status = result.get("status") or {}
    transaction_hash = (
        (result.get("transaction_outcome") or {}).get("id")
        or (result.get("transaction") or {}).get("hash")
    )

    if isinstance(status, dict) and "Failure" in status:
        raise CommitError(
            f"Transaction failed with error: {json.dumps(status['Failure'])}",
            transaction_hash=transaction_hash
        )

    success_value = None
    if isinstance(status, dict) and status.get("SuccessValue"):
        success_value = base64.b64decode(status["SuccessValue"]).decode("utf-8")

    logs = [
        log
        for receipt in result.get("receipts_outcome") or []
        for log in (receipt.get("outcome") or {}).get("logs", [])
    ]

    return CommitOutcome(
        success=True,
        transaction_hash=transaction_hash,
        success_value=success_value,
        logs=logs
    )


def _is_finalized(status_result: Dict[str, Any]) -> bool:
    status = status_result.get("status")
    return isinstance(status, dict) and ("SuccessValue" in status or "Failure" in status)


class NearLedgerStore:
    """Committed-state provider and commit target on a NEAR contract."""

    def __init__(
        self,
        rpc_url: str,
        contract_id: str,
        collections: Mapping[str, CollectionConfig],
        signer_url: Optional[str] = None,
        signer_token: Optional[str] = None,
        signer_account_id: Optional[str] = None,
        gas: str = "30000000000000",
        deposit: str = "0",
        poll_max_attempts: int = 20,
        poll_interval: float = 3.0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], Any]] = None
    ):
        """
        Initialize the store.

        Args:
            rpc_url: NEAR JSON-RPC endpoint
            contract_id: Account holding the collections
            collections: Collection configs (view/update methods per key)
            signer_url: Signing gateway endpoint used for commits
            signer_token: Bearer token for the signing gateway
            signer_account_id: Account that signs commits (defaults to contract_id)
            gas: Gas attached to commit calls
            deposit: Deposit (yoctoNEAR) attached to commit calls
            poll_max_attempts: Status polls after a timed-out commit
            poll_interval: Seconds between status polls
            timeout: Per-request timeout in seconds
            session: requests session (a new one if not provided)
            sleep: Blocking sleep used between polls

        Raises:
            ValueError: If contract_id is missing
        """
        if not contract_id:
            raise ValueError("Contract id must be provided via config or FACTORY_CONTRACT_ID")

        self.rpc_url = rpc_url
        self.contract_id = contract_id
        self.collections = dict(collections)
        self.signer_url = signer_url
        self.signer_token = signer_token
        self.signer_account_id = signer_account_id or contract_id
        self.gas = gas
        self.deposit = deposit
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep or time.sleep

    async def fetch_committed(self, collection: str) -> Any:
        return await asyncio.to_thread(self.fetch_committed_sync, collection)

    async def commit(self, collection: str, records: List[Record]) -> CommitOutcome:
        return await asyncio.to_thread(self.commit_sync, collection, records)

    def fetch_committed_sync(self, collection: str) -> Any:
        """
        Call the collection's view method.

        Returns:
            The decoded view result; the contract returns its records as a
            JSON-encoded string, which the reconciler decodes. None when the
            view returns nothing.
        """
        config = self._collection(collection, "ledger")

        result = self._rpc("query", {
            "request_type": "call_function",
            "finality": "final",
            "account_id": self.contract_id,
            "method_name": config.view_method,
            "args_base64": base64.b64encode(b"{}").decode("ascii"),
        })

        if result.get("error"):
            raise RpcError("VIEW_ERROR", str(result["error"]))

        raw = bytes(result.get("result") or [])
        if not raw:
            return None

        value = json.loads(raw.decode("utf-8"))
        logger.debug(f"Viewed {config.view_method} on {self.contract_id}")
        return value

    def commit_sync(self, collection: str, records: List[Record]) -> CommitOutcome:
        """
        Submit the next state through the signing gateway.

        Raises:
            TransientRemoteError: Gateway unreachable, timed out without a
                transaction hash, rate limited or 5xx
            CommitError: Gateway or contract rejected the write
            PollExhausted: Timed-out transaction never finalized
        """
        config = self._collection(collection, "ledger")
        if not self.signer_url:
            raise CommitError("No signer configured; set SIGNER_URL to enable commits")

        request = {
            "signer_id": self.signer_account_id,
            "receiver_id": self.contract_id,
            "method_name": config.update_method,
            "args": {config.update_arg: json.dumps(records)},
            "gas": self.gas,
            "deposit": self.deposit,
        }
        headers = {"Authorization": f"Bearer {self.signer_token}"} if self.signer_token else {}

        logger.info(f"Submitting {len(records)} {collection} records via {config.update_method}")

        try:
            response = self.session.post(
                self.signer_url,
                json=request,
                headers=headers,
                timeout=self.timeout
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientRemoteError(f"Signer request failed: {e}") from e

        body = self._json_body(response)

        if response.status_code >= 400:
            error = body.get("error") if isinstance(body.get("error"), dict) else {}
            transaction_hash = error.get("transaction_hash") or body.get("transaction_hash")

            if TIMEOUT_ERROR in json.dumps(body):
                if transaction_hash:
                    logger.error(
                        f"Timeout error encountered for {transaction_hash}. "
                        f"Attempting to poll transaction status..."
                    )
                    return parse_execution_outcome(self.poll_transaction_status(transaction_hash))
                raise TransientRemoteError("Signer timed out before returning a transaction hash")

            if response.status_code in TRANSIENT_STATUS_CODES:
                raise TransientRemoteError(
                    f"Signer returned HTTP {response.status_code}",
                    status_code=response.status_code
                )

            raise CommitError(
                f"Signer rejected commit with HTTP {response.status_code}: {json.dumps(body)[:300]}",
                transaction_hash=transaction_hash
            )

        return parse_execution_outcome(body.get("result", body))

    def poll_transaction_status(self, transaction_hash: str) -> Dict[str, Any]:
        """
        Poll the RPC node until a transaction finalizes.

        Raises:
            PollExhausted: If it has not finalized after poll_max_attempts
        """
        for attempt in range(1, self.poll_max_attempts + 1):
            try:
                status = self._rpc("tx", {
                    "tx_hash": transaction_hash,
                    "sender_account_id": self.signer_account_id,
                    "wait_until": "FINAL",
                })
                if _is_finalized(status):
                    logger.info(f"Transaction {transaction_hash} finalized")
                    return status
            except SyncError as e:
                logger.warning(f"Error checking transaction status: {e}")

            logger.info(f"Polling attempt {attempt}/{self.poll_max_attempts} for {transaction_hash}")
            if attempt < self.poll_max_attempts:
                self._sleep(self.poll_interval)

        raise PollExhausted(transaction_hash, self.poll_max_attempts)

    def _collection(self, collection: str, source: str) -> CollectionConfig:
        config = self.collections.get(collection)
        if config is None:
            raise FetchFailed(collection, source, "collection is not configured")
        return config

    def _rpc(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": "ledger-sync", "method": method, "params": params}

        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientRemoteError(f"RPC {method} failed: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientRemoteError(
                f"RPC {method} returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        body = self._json_body(response)
        error = body.get("error")
        if error:
            cause = (error.get("cause") or {}).get("name")
            if TIMEOUT_ERROR in (cause, error.get("name")):
                raise TransientRemoteError(f"RPC {method} timed out")
            raise RpcError(error.get("name", "UNKNOWN_ERROR"), cause or error.get("message"), error.get("data"))

        if response.status_code != 200:
            raise RpcError("HTTP_ERROR", f"RPC {method} returned HTTP {response.status_code}")

        return body.get("result") or {}

    @staticmethod
    def _json_body(response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
