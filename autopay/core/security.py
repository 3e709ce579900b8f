"""Signature utilities for provider webhooks and checkout callbacks."""
import hashlib
import hmac
import logging
from typing import Union

logger = logging.getLogger(__name__)


def compute_signature(body: Union[bytes, str], secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed by ``secret``."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: Union[bytes, str], signature: str, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature."""
    if not signature or not secret:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def checkout_payload(order_id: str, payment_id: str) -> str:
    """Message signed by the checkout: ``order_id|payment_id``."""
    return f"{order_id}|{payment_id}"


def payment_link_payload(link_id: str, reference_id: str, status: str, payment_id: str) -> str:
    """Message Razorpay signs on a payment link callback redirect."""
    return f"{link_id}|{reference_id}|{status}|{payment_id}"
