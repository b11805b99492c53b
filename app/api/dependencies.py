"""
Shared API dependencies.
"""
import hmac
import logging
import uuid
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError
from sqlmodel import Session

from app.core.config import settings
from app.core.database import get_session
from app.core.security import verify_token
from app.middleware.request_logging import request_id_ctx
from app.models.user import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)

# Alias for database session dependency
get_db = get_session


def get_request_id() -> str:
    """
    Dependency to get the current request ID from context.

    Returns:
        The current request ID, or 'unknown' if not in a request context.
    """
    return request_id_ctx.get()


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    session: Annotated[Session, Depends(get_session)],
) -> User:
    """
    Dependency to get the current authenticated user from the bearer token.
    Raises HTTPException with status 401 if authentication fails.
    """
    if token is None:
        raise _unauthorized()

    try:
        payload = verify_token(token, "access")
        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise _unauthorized()
        user_uuid = uuid.UUID(user_id)
    except HTTPException:
        raise
    except ExpiredSignatureError:
        logger.info("Expired token presented")
        raise _unauthorized()
    except (JWTError, ValueError) as e:
        logger.warning("JWT error during token validation", extra={"error": str(e)})
        raise _unauthorized()

    user = session.get(User, user_uuid)
    if user is None or not user.is_active:
        raise _unauthorized()
    return user


def get_bearer_token(authorization: Annotated[Optional[str], Header()] = None) -> str:
    """Raw bearer value, for callers that authenticate with something other than a JWT."""
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        raise _unauthorized("Authorization header must be a Bearer token")
    return value.strip()


def verify_cron_secret(token: Annotated[str, Depends(get_bearer_token)]) -> None:
    """Guard for the scheduler endpoint: `Authorization: Bearer {CRON_SECRET}`."""
    if not settings.cron_secret:
        logger.warning("Cron endpoint called but CRON_SECRET is not configured")
        raise _unauthorized("Cron endpoint is disabled")
    if not hmac.compare_digest(token, settings.cron_secret):
        raise _unauthorized("Invalid cron secret")
