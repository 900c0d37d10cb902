from ledger_sync.webhook.verifier import AuthenticityVerifier, compute_tag, MAC_HEADER

__all__ = [
    "AuthenticityVerifier",
    "compute_tag",
    "MAC_HEADER",
]
