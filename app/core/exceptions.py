"""
Custom application exceptions.
"""
from typing import Optional


class CatalystAppException(Exception):
    """Base exception for the Catalyst Launch service."""
    pass


class UnauthorizedError(CatalystAppException):
    """Raised when user is not authorized."""
    pass


class IntegrationError(CatalystAppException):
    """Base exception for integration and sync failures."""
    pass


class ProviderNotFoundError(IntegrationError):
    """Raised when no provider is registered under the requested id."""
    pass


class ProviderConfigurationError(IntegrationError):
    """Raised when a provider is missing OAuth credentials, secrets, or uses a different auth method."""
    pass


class IntegrationNotFoundError(IntegrationError):
    """Raised when the user has no connection for the requested provider."""
    pass


class TokenRefreshError(IntegrationError):
    """Raised when an access token cannot be refreshed."""
    pass


class OAuthStateError(IntegrationError):
    """Raised when an OAuth callback carries a missing, expired or foreign state."""
    pass


class WebhookNotSupportedError(IntegrationError):
    """Raised when a provider does not implement webhook handling or registration."""
    pass


class WebhookSignatureError(IntegrationError):
    """Raised when an inbound webhook fails signature verification."""
    pass


class TransientProviderError(IntegrationError):
    """Raised when a provider keeps failing with 5xx, 429 or connection errors after all retries."""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class PermanentRequestError(IntegrationError):
    """Raised when a provider rejects a request with a non-retryable 4xx status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
