# backend/app/services/webhooks.py
from __future__ import annotations

import hashlib
import hmac

from ..core.errors import SignatureInvalid

SIGNATURE_HEADER = "x-fullenrich-signature"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> None:
    """
    Verify an HMAC-SHA256 hex signature over the raw request body.

    A missing secret is a configuration error and rejects every delivery.
    """
    if not secret:
        raise SignatureInvalid("Webhook secret not configured")
    if not signature:
        raise SignatureInvalid("Missing signature")

    expected = compute_signature(body, secret)
    # compare_digest only takes non-ASCII input as bytes
    received = signature.strip().lower().encode("utf-8")
    if not hmac.compare_digest(received, expected.encode("ascii")):
        raise SignatureInvalid("Invalid signature")
