"""
JWT helpers for API bearer tokens.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.core.config import settings
from app.core.time_utils import utc_now


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token carrying `data` (at least `sub`)."""
    to_encode = data.copy()
    expire = utc_now() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, token_type: str = "access") -> Dict[str, Any]:
    """
    Decode and validate a token.

    Raises:
        ExpiredSignatureError: Token has expired
        JWTError: Bad signature, malformed token or wrong token type
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    if payload.get("type") != token_type:
        raise JWTError(f"Expected a {token_type} token")
    return payload
