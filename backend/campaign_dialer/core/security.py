"""
Webhook signature verification
"""
import hashlib
import hmac
from datetime import datetime, timedelta
from typing import Optional

from campaign_dialer.core.exceptions import WebhookAuthenticationError
from campaign_dialer.utils.clock import ensure_utc, utc_now


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Raise WebhookAuthenticationError unless `signature` matches the body.

    Accepts the bare hex digest or a 'sha256=' prefixed one.
    """
    if not signature:
        raise WebhookAuthenticationError("Missing webhook signature")

    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(expected, provided.lower()):
        raise WebhookAuthenticationError("Invalid webhook signature")


def verify_timestamp(
    timestamp: Optional[datetime],
    max_skew_seconds: int,
    now: Optional[datetime] = None
) -> None:
    """Reject events whose timestamp is too far from the current time (replays)."""
    if timestamp is None:
        return
    now = ensure_utc(now) or utc_now()
    if abs(ensure_utc(timestamp) - now) > timedelta(seconds=max_skew_seconds):
        raise WebhookAuthenticationError("Webhook timestamp outside the allowed window")
