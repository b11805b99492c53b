"""
HMAC-SHA256 signing primitives.

Used in two directions:
- Inbound: verifying webhook deliveries from providers (GitHub, Linear,
  Slack, Zoom, Stripe) before their payload is parsed.
- Outbound/self: signing short-lived tokens such as OAuth `state` values
  when no shared cache is available.

All comparisons go through `hmac.compare_digest`.
"""

import base64
import hashlib
import hmac
from typing import Union

BytesLike = Union[str, bytes]


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compute_hmac_sha256(message: BytesLike, secret: BytesLike) -> str:
    """
    Compute a hex-encoded HMAC-SHA256 digest.

    Args:
        message: Raw payload or canonical message to sign
        secret: Shared secret

    Returns:
        Hex-encoded HMAC-SHA256 signature (64 characters)
    """
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def verify_hmac_signature(
    payload: BytesLike,
    signature: str | None,
    secret: BytesLike | None,
    prefix: str = "",
) -> bool:
    """
    Verify `signature` equals `prefix + hmac_sha256_hex(payload, secret)`.

    Returns False (never raises) for a missing signature or secret.

    Example:
        >>> sig = "sha256=" + compute_hmac_sha256(b"{}", "s3cret")
        >>> verify_hmac_signature(b"{}", sig, "s3cret", prefix="sha256=")
        True
    """
    if not signature or not secret:
        return False

    expected = f"{prefix}{compute_hmac_sha256(payload, secret)}"
    return hmac.compare_digest(_to_bytes(signature.strip()), _to_bytes(expected))


def sha256_hex(content: BytesLike) -> str:
    """Plain SHA-256 hex digest (content fingerprints, token cache keys)."""
    return hashlib.sha256(_to_bytes(content)).hexdigest()


def compute_hmac_sha256_base64(message: BytesLike, secret: BytesLike) -> str:
    """Base64-encoded HMAC-SHA256 digest (Todoist)."""
    digest = hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_hmac_signature_base64(payload: BytesLike, signature: str | None, secret: BytesLike | None) -> bool:
    """Like verify_hmac_signature, for providers that send the digest base64-encoded."""
    if not signature or not secret:
        return False
    expected = compute_hmac_sha256_base64(payload, secret)
    return hmac.compare_digest(_to_bytes(signature.strip()), _to_bytes(expected))
