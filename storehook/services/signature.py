"""Shopify webhook signature verification.

Shopify signs every delivery with HMAC-SHA256 over the raw request body,
keyed with the app's webhook secret, and sends the base64 digest in the
X-Shopify-Hmac-Sha256 header.

The digest MUST be computed over the exact bytes received. Re-serializing
the parsed JSON changes key order/whitespace and breaks the signature.
"""

import base64
import binascii
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Shopify-Hmac-Sha256"


def compute_signature(raw_body, secret):
    """Return the base64 HMAC-SHA256 of raw_body, as Shopify would send it."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_shopify_hmac(raw_body, signature_header, secret):
    """Check a delivery's signature. Fails closed.

    Args:
        raw_body: Request body bytes exactly as received.
        signature_header: Value of X-Shopify-Hmac-Sha256 (may be None).
        secret: Shared webhook secret (may be None if unconfigured).

    Returns:
        True only if the header decodes and matches the computed digest.
    """
    if not secret:
        logger.error("SHOPIFY_WEBHOOK_SECRET not configured — rejecting webhook")
        return False
    if not signature_header:
        return False

    try:
        expected = base64.b64decode(signature_header.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False

    computed = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(computed, expected)
