"""Webhook security utilities.

Provides HMAC signature generation and verification for webhook payloads
so subscribers can check that a delivery came from BudStack unchanged.

The signature is the hex HMAC-SHA256 of the canonical JSON body, keyed
with the subscription secret. The body that is signed is the body that is
sent: callers serialize once with canonical_json() and reuse the string.
"""

import hashlib
import hmac
import json
import secrets
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"

SECRET_BYTES = 32


def canonical_json(payload: dict[str, Any] | str | bytes) -> str | bytes:
    """Serialize a payload to its canonical JSON form.

    Args:
        payload: Webhook payload (dict, or an already-serialized string or bytes).

    Returns:
        Compact, key-sorted JSON. Strings and bytes are returned verbatim.
    """
    if isinstance(payload, (str, bytes)):
        return payload
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def generate_signature(payload: dict[str, Any] | str | bytes, secret: str) -> str:
    """Generate HMAC-SHA256 signature for a webhook payload.

    An empty payload is signed as the empty string.

    Args:
        payload: Webhook payload (dict, JSON string or raw bytes).
        secret: Subscription secret.

    Returns:
        Lowercase hex digest.
    """
    body = canonical_json(payload)
    data = body if isinstance(body, bytes) else body.encode("utf-8")

    signature = hmac.new(
        secret.encode("utf-8"),
        data,
        hashlib.sha256,
    ).hexdigest()

    logger.debug("webhook_signature_generated", payload_length=len(data))

    return signature


def verify_signature(
    payload: dict[str, Any] | str | bytes,
    signature: str,
    secret: str,
) -> bool:
    """Verify HMAC-SHA256 signature of a webhook payload.

    Uses a constant-time comparison. Any malformed input yields False.

    Args:
        payload: Webhook payload (dict, JSON string or raw bytes).
        signature: Claimed signature to verify.
        secret: Subscription secret.

    Returns:
        True if signature is valid, False otherwise.
    """
    if not isinstance(signature, str) or not isinstance(secret, str):
        return False

    try:
        expected_signature = generate_signature(payload, secret)
        is_valid = hmac.compare_digest(
            signature.encode("utf-8"),
            expected_signature.encode("utf-8"),
        )
    except (TypeError, ValueError) as e:
        logger.warning("webhook_signature_malformed", error=str(e))
        return False

    if not is_valid:
        logger.warning("webhook_signature_invalid")

    return is_valid


def create_signature_headers(
    body: str,
    event_type: str,
    secret: str,
    *,
    user_agent: str,
) -> dict[str, str]:
    """Create HTTP headers for a webhook delivery.

    Args:
        body: Serialized body exactly as it will be sent.
        event_type: Event type string.
        secret: Subscription secret.
        user_agent: User-Agent header value.

    Returns:
        Dictionary of headers to include in request.
    """
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: generate_signature(body, secret),
        EVENT_HEADER: event_type,
        "User-Agent": user_agent,
    }


def verify_from_headers(
    body: str | bytes,
    headers: dict[str, str],
    secret: str,
) -> bool:
    """Verify a received delivery from its raw body and headers.

    Header lookup is case-insensitive.

    Args:
        body: Raw request body.
        headers: Request headers.
        secret: Subscription secret.

    Returns:
        True if signature is valid.

    Raises:
        ValueError: If the signature header is missing.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    signature = lowered.get(SIGNATURE_HEADER.lower())

    if not signature:
        raise ValueError(f"Missing {SIGNATURE_HEADER} header")

    return verify_signature(body, signature, secret)


def generate_webhook_secret() -> str:
    """Generate a new subscription secret (64 hex characters)."""
    return secrets.token_hex(SECRET_BYTES)


def mask_secret(secret: str) -> str:
    """Mask a secret for display after creation.

    Args:
        secret: Full secret.

    Returns:
        Asterisks followed by the last four characters.
    """
    if len(secret) <= 4:
        return "****"
    return f"****{secret[-4:]}"
