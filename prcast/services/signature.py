"""
GitHub webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the exact raw request body
and sends the result as ``X-Hub-Signature-256: sha256=<hex>``.
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: Union[str, bytes]) -> str:
    """
    Compute the signature GitHub would send for ``body``.

    Args:
        body: Raw request body
        secret: Shared webhook secret

    Returns:
        Signature in ``sha256=<hex>`` form
    """
    key = secret.encode() if isinstance(secret, str) else secret
    mac = hmac.new(key, msg=body, digestmod=hashlib.sha256)
    return f"{SIGNATURE_PREFIX}{mac.hexdigest()}"


def verify_signature(body: bytes, header: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a delivery's signature header against the shared secret.

    A missing header, a missing secret, and a mismatch all verify as False.
    The comparison is constant-time.

    Args:
        body: Raw request body, exactly as received
        header: Value of the X-Hub-Signature-256 header
        secret: Shared webhook secret

    Returns:
        True if the signature is valid
    """
    if not header:
        logger.warning(f"Received a request without the {SIGNATURE_HEADER} header.")
        return False
    if not secret:
        logger.error("No webhook secret configured; rejecting delivery.")
        return False

    expected_signature = compute_signature(body, secret)
    if not hmac.compare_digest(header.strip().encode(), expected_signature.encode()):
        logger.error("Invalid webhook signature.")
        return False

    logger.debug("GitHub webhook signature verified successfully.")
    return True
