"""
Vault access for ledger sync secrets.

All secrets of the sync service live in one KV v2 entry (``ledger-sync`` by
default). ``<collection>_mac_secret`` holds the base64 webhook MAC secret of
each collection; ``airtable_token`` and ``signer_token`` hold the store
credentials.
"""

import os
from typing import Any, Dict, Iterable, Optional
import hvac
from hvac.exceptions import VaultError, InvalidPath
import logging

logger = logging.getLogger(__name__)

DEFAULT_SECRET_PATH = "ledger-sync"
CREDENTIAL_KEYS = ("airtable_token", "signer_token")


class VaultClient:
    """
    Reads sync secrets from HashiCorp Vault.

    Example:
        with VaultClient(vault_url="http://vault:8200") as vault:
            secrets = vault.get_mac_secrets(["agenda", "alerts"])
    """

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Connect and authenticate.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR)
            vault_token: Token (defaults to VAULT_TOKEN)
            verify_ssl: Whether to verify TLS certificates
            mount_point: KV v2 mount

        Raises:
            ValueError: If the URL or token is missing
            VaultError: If Vault is unreachable or rejects the token
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")
        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        try:
            self.client = hvac.Client(url=self.vault_url, token=self.vault_token, verify=verify_ssl)
            authenticated = self.client.is_authenticated()
        except Exception as e:
            logger.error(f"Could not reach Vault at {self.vault_url}: {e}")
            raise VaultError(f"Vault initialization failed: {e}") from e

        if not authenticated:
            raise VaultError(f"Failed to authenticate with Vault at {self.vault_url}")

        logger.info(f"Connected to Vault at {self.vault_url}")

    def read_secret(self, path: str = DEFAULT_SECRET_PATH) -> Dict[str, Any]:
        """
        Read the latest version of a KV v2 entry.

        Raises:
            InvalidPath: If nothing is stored at the path
            VaultError: On any other failure
        """
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )
        except InvalidPath:
            logger.error(f"No secrets stored at {self.mount_point}/{path}")
            raise
        except Exception as e:
            raise VaultError(f"Secret retrieval failed for {path}: {e}") from e

        entry = (response or {}).get("data")
        if not entry:
            raise InvalidPath(f"No data found at path: {path}")

        return entry.get("data") or {}

    def get_mac_secrets(self, collections: Iterable[str], path: str = DEFAULT_SECRET_PATH) -> Dict[str, str]:
        """
        Base64 MAC secret per collection.

        Collections without a ``<collection>_mac_secret`` key are left out so
        that the environment can still supply them.
        """
        data = self.read_secret(path)
        secrets = {
            collection: data[f"{collection}_mac_secret"]
            for collection in collections
            if data.get(f"{collection}_mac_secret")
        }
        logger.info(f"Vault supplied MAC secrets for {sorted(secrets)}")
        return secrets

    def get_store_credentials(self, path: str = DEFAULT_SECRET_PATH) -> Dict[str, str]:
        data = self.read_secret(path)
        return {key: data[key] for key in CREDENTIAL_KEYS if data.get(key)}

    def close(self):
        self.client = None
        logger.debug("Vault client closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
