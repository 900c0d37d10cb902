"""
Signed webhook client.

Sends a notification to a running webhook service the same way the table
store's automation does, which is handy for triggering a sync by hand.
"""

import logging
from typing import Any, Dict, Optional, Union

import requests

from ledger_sync.webhook.verifier import MAC_HEADER, compute_tag

logger = logging.getLogger(__name__)


class WebhookClient:
    """Posts MAC-signed notifications to ``{base_url}/webhook/{type}``."""

    def __init__(
        self,
        base_url: str,
        secrets: Dict[str, Union[bytes, str]],
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.secrets = dict(secrets)
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, webhook_type: str, body: bytes = b"{}") -> Dict[str, Any]:
        """
        Send a signed notification.

        Args:
            webhook_type: Collection key
            body: Raw body; the MAC covers these exact bytes

        Returns:
            Dictionary with status_code and the decoded JSON response

        Raises:
            ValueError: If no secret is known for the type
            requests.exceptions.RequestException: On transport failure
        """
        if webhook_type not in self.secrets:
            raise ValueError(f"No MAC secret for webhook type '{webhook_type}'")

        url = f"{self.base_url}/webhook/{webhook_type}"
        headers = {
            "Content-Type": "application/json",
            MAC_HEADER: compute_tag(body, self.secrets[webhook_type]),
        }

        response = self.session.post(url, data=body, headers=headers, timeout=self.timeout)

        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text}

        logger.info(f"Webhook {webhook_type} answered HTTP {response.status_code}: {payload}")
        return {"status_code": response.status_code, "response": payload}
