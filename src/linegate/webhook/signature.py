"""LINE webhook signature verification (HMAC-SHA256).

LINE signs the raw request body with the channel secret and sends the
base64-encoded digest in the X-Line-Signature header. Verification must run
on the exact bytes received, before the body is parsed.
"""

import base64
import binascii
import hashlib
import hmac

from linegate.errors import ConfigurationError

SIGNATURE_HEADER = "X-Line-Signature"


def require_secret(shared_secret: bytes | str | None) -> bytes:
    """Normalize the channel secret, failing on a missing or empty one.

    Args:
        shared_secret: Channel secret as bytes or str.

    Returns:
        Secret as bytes.

    Raises:
        ConfigurationError: If the secret is missing or empty.
    """
    if not shared_secret:
        raise ConfigurationError(
            "LINE channel secret not configured. Set LINE_CHANNEL_SECRET."
        )
    if isinstance(shared_secret, str):
        return shared_secret.encode("utf-8")
    return shared_secret


def compute_signature(raw_body: bytes, shared_secret: bytes | str) -> str:
    """Compute the base64 HMAC-SHA256 signature LINE would send for raw_body."""
    digest = hmac.new(require_secret(shared_secret), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(raw_body: bytes, signature_header: str | None, shared_secret: bytes | str) -> bool:
    """Verify a webhook signature in constant time.

    Args:
        raw_body: Raw request body bytes, exactly as received.
        signature_header: X-Line-Signature header value (base64).
        shared_secret: Channel secret.

    Returns:
        True only if the decoded header equals the HMAC of raw_body.
        False on mismatch, missing header or undecodable header.

    Raises:
        ConfigurationError: If shared_secret is missing or empty.
    """
    secret = require_secret(shared_secret)

    if not signature_header:
        return False

    try:
        expected = base64.b64decode(signature_header.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False

    computed = hmac.new(secret, raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(computed, expected)
