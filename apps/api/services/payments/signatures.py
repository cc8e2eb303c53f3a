"""HMAC signature checks for gateway callbacks and webhooks."""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, supplied: Optional[str]) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def compute_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Signature the checkout widget returns for `order_id|payment_id`."""
    return _hmac_sha256_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_payment_signature(order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
    if not secret:
        return False
    return _matches(compute_payment_signature(order_id, payment_id, secret), signature)


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """Signature over the exact request bytes as delivered by the gateway."""
    return _hmac_sha256_hex(secret, raw_body)


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not secret:
        return False
    return _matches(compute_webhook_signature(raw_body, secret), signature)
