"""
Fernet encryption for provider credentials stored at rest.

Access tokens, refresh tokens, API keys and per-subscription webhook secrets
are written to the database only in encrypted form and decrypted into an
IntegrationContext right before a provider call.

The Fernet key is derived from SECRET_KEY with HKDF-SHA256, so it is stable
across restarts and workers. Rotating SECRET_KEY makes every stored credential
unreadable; affected users have to reconnect their integrations.
"""
import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.config import settings
from app.core.logging_config import log_error

HKDF_INFO = b"catalyst-integration-token-encryption"
# Every Fernet token starts with the base64 of version byte 0x80
FERNET_PREFIX = "gAAAAA"

_fernet_key_cache: Optional[bytes] = None


def _get_fernet_key() -> bytes:
    """Derive (once) the urlsafe-base64 Fernet key from SECRET_KEY."""
    global _fernet_key_cache
    if _fernet_key_cache is None:
        if not settings.secret_key:
            raise ValueError("SECRET_KEY must be set before integration credentials can be stored")
        derived = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=HKDF_INFO,
        ).derive(settings.secret_key.encode("utf-8"))
        _fernet_key_cache = base64.urlsafe_b64encode(derived)
    return _fernet_key_cache


def _get_fernet() -> Fernet:
    return Fernet(_get_fernet_key())


def encrypt_token(token: str) -> str:
    """Encrypt a credential; blank values are rejected rather than stored."""
    if not token or not token.strip():
        raise ValueError("Cannot encrypt empty token")
    try:
        return _get_fernet().encrypt(token.encode("utf-8")).decode("utf-8")
    except Exception as e:
        log_error(e, action="token_encryption")
        raise


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a credential produced by encrypt_token.

    Raises:
        ValueError: The value is empty, corrupted, or was encrypted under a
            different SECRET_KEY.
    """
    if not encrypted_token or not encrypted_token.strip():
        raise ValueError("Cannot decrypt empty token")
    try:
        return _get_fernet().decrypt(encrypted_token.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        log_error(e, action="token_decryption")
        raise ValueError(
            "Stored credential could not be decrypted (corrupted, or SECRET_KEY changed). "
            "The user needs to reconnect this integration."
        ) from e


def is_encrypted(value: str) -> bool:
    """Shape check only; a True result does not mean the value decrypts."""
    return bool(value) and value.startswith(FERNET_PREFIX)


def reset_key_cache():
    """Forget the derived key (tests, or SECRET_KEY changed at runtime)."""
    global _fernet_key_cache
    _fernet_key_cache = None


def encrypt_optional(token: Optional[str]) -> Optional[str]:
    """Encrypt a token that may be absent (e.g. refresh tokens for providers that never issue them)."""
    if not token:
        return None
    return encrypt_token(token)


def decrypt_optional(encrypted_token: Optional[str]) -> Optional[str]:
    """Decrypt a stored token that may be absent."""
    if not encrypted_token:
        return None
    return decrypt_token(encrypted_token)
