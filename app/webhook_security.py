"""
Webhook Security Module

Signature verification for MercadoPago notifications:
- x-signature header "ts=<timestamp>,v1=<hex hmac>"
- HMAC-SHA256 over the manifest "id:<data.id>;request-id:<x-request-id>;ts:<ts>;"
- Constant-time signature comparison
- Timestamp window against replayed notifications
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def parse_signature_header(header: str) -> tuple[Optional[str], Optional[str]]:
    """Split "ts=...,v1=..." into (ts, v1)"""
    values = {}
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if sep:
            values[key.strip()] = value.strip()
    return values.get("ts"), values.get("v1")


def build_manifest(data_id: str, request_id: Optional[str], ts: str) -> str:
    """Signed template; parts without a value are left out"""
    manifest = f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.
    MercadoPago may send seconds or milliseconds.
    """
    if not timestamp:
        return False

    try:
        webhook_time = int(timestamp)
        if webhook_time > 10**12:
            webhook_time //= 1000
        age = abs(int(time.time()) - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


def verify_mercadopago_signature(
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: str,
    secret: str,
) -> None:
    """
    Raises:
        WebhookSignatureError: header missing, malformed, expired or not matching
    """
    if not signature_header:
        raise WebhookSignatureError("Missing x-signature header")

    ts, v1 = parse_signature_header(signature_header)
    if not ts or not v1:
        raise WebhookSignatureError("Malformed x-signature header")

    if not verify_timestamp(ts):
        raise WebhookSignatureError("Webhook timestamp expired or invalid")

    manifest = build_manifest(data_id, request_id, ts)
    expected = compute_hmac_sha256(secret, manifest.encode("utf-8"))
    if not constant_time_compare(expected, v1):
        raise WebhookSignatureError("Signature mismatch")


def verify_mercadopago_webhook(request: Request, data_id: str, secret: Optional[str]) -> None:
    """
    Verify a MercadoPago notification for the given data.id.

    With no secret configured, verification is skipped (development only).
    Raises HTTPException(401) on failure.
    """
    if not secret:
        logger.warning("⚠️ MERCADOPAGO_WEBHOOK_SECRET not set; skipping webhook signature verification")
        return

    request_id = request.headers.get("x-request-id")
    try:
        verify_mercadopago_signature(request.headers.get("x-signature"), request_id, data_id, secret)
    except WebhookSignatureError as e:
        logger.error(f"❌ MercadoPago webhook rejected (request {request_id}): {e}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

    logger.debug(f"✅ MercadoPago webhook signature verified (request {request_id})")
