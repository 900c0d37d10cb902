"""
Webhook authenticity verification.

Notifications are signed with HMAC-SHA256 over the exact raw request body and
carry the tag as ``hmac-sha256=<hex digest>``. Each collection has its own
shared secret.
"""

import hashlib
import hmac
import logging
from typing import Dict, Mapping, Union

from ledger_sync.config import decode_mac_secret
from ledger_sync.errors import ValidationError

logger = logging.getLogger(__name__)

MAC_PREFIX = "hmac-sha256="
MAC_HEADER = "X-Content-MAC"
LEGACY_MAC_HEADER = "X-Airtable-Content-MAC"


def _secret_bytes(secret: Union[bytes, str]) -> bytes:
    if isinstance(secret, str):
        return decode_mac_secret(secret)
    return secret


def compute_tag(raw_body: bytes, secret: Union[bytes, str]) -> str:
    """
    Compute the MAC tag for a body.

    Args:
        raw_body: Raw, unparsed body bytes
        secret: Secret bytes, or a base64 string

    Returns:
        ``hmac-sha256=`` followed by the lowercase hex digest

    Raises:
        ValueError: If a string secret is not valid base64
    """
    digest = hmac.new(_secret_bytes(secret), raw_body, hashlib.sha256).hexdigest()
    return f"{MAC_PREFIX}{digest}"


class AuthenticityVerifier:
    """
    Verifies webhook MAC tags against per-collection secrets.

    Example:
        verifier = AuthenticityVerifier({"agenda": secret})
        verifier.verify_collection("agenda", body, request.headers[MAC_HEADER])
    """

    def __init__(self, secrets: Mapping[str, Union[bytes, str]] = None):
        self._secrets: Dict[str, bytes] = {
            key: _secret_bytes(secret) for key, secret in (secrets or {}).items()
        }

    @property
    def collections(self):
        return sorted(self._secrets)

    def verify(self, raw_body: bytes, received_tag, secret: Union[bytes, str]) -> bool:
        """
        Check a received tag against the body.

        Returns False for any mismatch, including a missing tag. Only a
        malformed (non-base64) string secret raises.
        """
        expected = compute_tag(raw_body, secret)

        if not isinstance(received_tag, str) or not received_tag:
            return False

        return hmac.compare_digest(
            expected.encode("utf-8"),
            received_tag.encode("utf-8")
        )

    def verify_collection(self, collection: str, raw_body: bytes, received_tag) -> bool:
        """
        Verify a tag using the secret configured for ``collection``.

        Raises:
            ValidationError: If the collection is unknown
        """
        if collection not in self._secrets:
            raise ValidationError(f"Unknown webhook type: {collection}")

        ok = self.verify(raw_body, received_tag, self._secrets[collection])
        if not ok:
            logger.warning(f"MAC mismatch for {collection} webhook")
        return ok
