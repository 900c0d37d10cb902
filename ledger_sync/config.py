"""
Configuration for the ledger sync service.

Settings are assembled from three layers, later layers winning:

1. Built-in defaults (the ``agenda`` and ``alerts`` collections)
2. A YAML file (``--config`` argument or ``LEDGER_SYNC_CONFIG``)
3. Environment variables, then Vault secrets when Vault is enabled

Example YAML::

    network: testnet
    contract_id: factory.testnet
    coalesce_delay_seconds: 2
    retry:
      max_attempts: 5
      initial_delay_seconds: 1
    collections:
      agenda:
        table: Agenda
        key_field: Id
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from ledger_sync.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = ("agenda", "alerts")


def decode_mac_secret(secret_b64: str) -> bytes:
    """
    Decode a base64 MAC secret.

    Raises:
        ValueError: If the secret is not valid base64
    """
    try:
        return base64.b64decode(secret_b64.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"MAC secret is not valid base64: {e}") from e


@dataclass
class CollectionConfig:
    """Where a collection lives in each store and how its webhooks are signed."""

    key: str
    table: str
    view: str = "Grid view"
    view_method: str = ""
    update_method: str = ""
    update_arg: str = ""
    key_field: Optional[str] = None
    mac_secret: Optional[str] = None

    def __post_init__(self):
        self.view_method = self.view_method or f"get_{self.key}"
        self.update_method = self.update_method or f"update_{self.key}"
        self.update_arg = self.update_arg or f"new_{self.key}"

    @property
    def mac_secret_bytes(self) -> bytes:
        if not self.mac_secret:
            raise ValueError(f"No MAC secret configured for collection '{self.key}'")
        return decode_mac_secret(self.mac_secret)


@dataclass
class RetryConfig:
    max_attempts: int = 5
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.0


@dataclass
class SyncSettings:
    """Complete runtime configuration."""

    collections: Dict[str, CollectionConfig] = field(default_factory=dict)

    # TableStore (Airtable)
    airtable_api_url: str = "https://api.airtable.com/v0"
    airtable_base_id: Optional[str] = None
    airtable_token: Optional[str] = None

    # LedgerStore (NEAR)
    network: str = "testnet"
    rpc_url: Optional[str] = None
    contract_id: Optional[str] = None
    signer_url: Optional[str] = None
    signer_token: Optional[str] = None
    signer_account_id: Optional[str] = None
    commit_gas: str = "30000000000000"
    commit_deposit: str = "0"
    poll_max_attempts: int = 20
    poll_interval_seconds: float = 3.0

    # Scheduling
    coalesce_delay_seconds: float = 2.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    request_timeout_seconds: float = 10.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    json_logging: bool = False

    def __post_init__(self):
        if not self.rpc_url:
            self.rpc_url = f"https://rpc.{self.network}.near.org"

    def mac_secrets(self) -> Dict[str, bytes]:
        """Decoded MAC secret per collection."""
        return {key: c.mac_secret_bytes for key, c in self.collections.items()}

    def validate(self) -> None:
        """
        Check that every collection has a decodable MAC secret.

        Raises:
            ValueError: On the first misconfigured collection
        """
        if not self.collections:
            raise ValueError("At least one collection must be configured")

        for key, collection in self.collections.items():
            if not collection.mac_secret:
                raise ValueError(
                    f"Missing MAC secret for collection '{key}'. "
                    f"Set {key.upper()}_MAC_SECRET_BASE64 or configure it in Vault"
                )
            decode_mac_secret(collection.mac_secret)


def default_collections() -> Dict[str, CollectionConfig]:
    return {
        key: CollectionConfig(key=key, table=key.capitalize())
        for key in DEFAULT_COLLECTIONS
    }


def _build_settings(data: Dict[str, Any]) -> SyncSettings:
    data = dict(data)

    collections = default_collections()
    for key, options in (data.pop("collections", None) or {}).items():
        options = dict(options or {})
        options.setdefault("table", key.capitalize())
        collections[key] = CollectionConfig(key=key, **options)

    retry = RetryConfig(**(data.pop("retry", None) or {}))
    data.pop("vault", None)

    return SyncSettings(collections=collections, retry=retry, **data)


def _apply_env_overrides(settings: SyncSettings, environ) -> None:
    env_map = {
        "AIRTABLE_PERSONAL_ACCESS_TOKEN": "airtable_token",
        "AIRTABLE_BASE_ID": "airtable_base_id",
        "AIRTABLE_API_URL": "airtable_api_url",
        "NETWORK": "network",
        "NEAR_RPC_URL": "rpc_url",
        "FACTORY_CONTRACT_ID": "contract_id",
        "SIGNER_URL": "signer_url",
        "SIGNER_TOKEN": "signer_token",
        "SIGNER_ACCOUNT_ID": "signer_account_id",
    }
    for env_name, attr in env_map.items():
        value = environ.get(env_name)
        if value:
            setattr(settings, attr, value.strip())

    if environ.get("NETWORK") and not environ.get("NEAR_RPC_URL"):
        settings.rpc_url = f"https://rpc.{settings.network}.near.org"

    if environ.get("COALESCE_DELAY_SECONDS"):
        settings.coalesce_delay_seconds = float(environ["COALESCE_DELAY_SECONDS"])

    if environ.get("JSON_LOGGING"):
        settings.json_logging = environ["JSON_LOGGING"].lower() == "true"

    for key, collection in settings.collections.items():
        secret = environ.get(f"{key.upper()}_MAC_SECRET_BASE64")
        if secret:
            collection.mac_secret = secret.strip()


def _apply_vault_secrets(settings: SyncSettings, vault_options: Dict[str, Any]) -> None:
    path = vault_options.get("path", "ledger-sync")
    with VaultClient(
        vault_url=vault_options.get("url"),
        mount_point=vault_options.get("mount_point", "secret"),
    ) as vault:
        for key, secret in vault.get_mac_secrets(settings.collections, path=path).items():
            settings.collections[key].mac_secret = secret

        credentials = vault.get_store_credentials(path=path)
        if credentials.get("airtable_token"):
            settings.airtable_token = credentials["airtable_token"]
        if credentials.get("signer_token"):
            settings.signer_token = credentials["signer_token"]


def load_settings(
    path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    validate: bool = True
) -> SyncSettings:
    """
    Load settings from YAML, environment and (optionally) Vault.

    Args:
        path: YAML config file; falls back to LEDGER_SYNC_CONFIG
        environ: Environment mapping (defaults to os.environ)
        validate: Whether to require decodable MAC secrets

    Returns:
        SyncSettings

    Raises:
        ValueError: If the configuration is invalid
        FileNotFoundError: If an explicit config file does not exist
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get("LEDGER_SYNC_CONFIG")

    data: Dict[str, Any] = {}
    if path:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")

    vault_options = dict(data.get("vault") or {})

    try:
        settings = _build_settings(data)
    except TypeError as e:
        raise ValueError(f"Invalid configuration: {e}") from e

    _apply_env_overrides(settings, environ)

    if vault_options.get("enabled") and (vault_options.get("url") or environ.get("VAULT_ADDR")):
        _apply_vault_secrets(settings, vault_options)

    if validate:
        settings.validate()

    logger.debug(f"Configured collections: {sorted(settings.collections)}")
    return settings
