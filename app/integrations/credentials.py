"""
Token storage helpers shared by the sync service and webhook registration.

Tokens are encrypted at rest and only decrypted into an IntegrationContext
right before a provider call.
"""
from datetime import timedelta
from typing import Optional

from app.core.config import TOKEN_REFRESH_MARGIN_MINUTES
from app.core.encryption import decrypt_optional, decrypt_token, encrypt_optional, encrypt_token
from app.core.time_utils import ensure_utc, utc_now
from app.integrations.types import IntegrationContext, IntegrationTokens
from app.models.integration import Integration


def decrypt_tokens(integration: Integration) -> IntegrationTokens:
    return IntegrationTokens(
        access_token=decrypt_token(integration.access_token_encrypted),
        refresh_token=decrypt_optional(integration.refresh_token_encrypted),
        expires_at=ensure_utc(integration.token_expires_at) if integration.token_expires_at else None,
    )


def store_tokens(integration: Integration, tokens: IntegrationTokens) -> None:
    """Encrypt tokens onto the row. A missing refresh token keeps the stored one."""
    integration.access_token_encrypted = encrypt_token(tokens.access_token)
    if tokens.refresh_token:
        integration.refresh_token_encrypted = encrypt_optional(tokens.refresh_token)
    integration.token_expires_at = tokens.expires_at
    integration.touch()


def build_context(integration: Integration, tokens: Optional[IntegrationTokens] = None) -> IntegrationContext:
    return IntegrationContext(
        user_id=integration.user_id,
        integration_id=integration.id,
        tokens=tokens or decrypt_tokens(integration),
        metadata=integration.get_metadata(),
    )


def needs_refresh(tokens: IntegrationTokens, margin_minutes: int = TOKEN_REFRESH_MARGIN_MINUTES) -> bool:
    """True when the access token expires within the margin and can be refreshed."""
    if not tokens.expires_at or not tokens.refresh_token:
        return False
    return ensure_utc(tokens.expires_at) <= utc_now() + timedelta(minutes=margin_minutes)
