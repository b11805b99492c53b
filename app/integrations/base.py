"""
Provider capability contract.

Every provider subclasses BaseIntegration (OAuth providers) or
ApiKeyIntegration (API-key providers) and implements account lookup and
`sync`. Webhook handling and registration are optional capabilities whose
default implementations raise WebhookNotSupportedError.

Shared helpers live here so providers only own their wire format:
- fetch_with_retry: backoff, Retry-After, 4xx pass-through
- request_json: fetch_with_retry + PermanentRequestError on 4xx
- standard OAuth2 authorization / code exchange / refresh
- HMAC webhook verification
"""
import asyncio
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, ClassVar, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import OAuthProviderConfig, Settings, settings as default_settings
from app.core.exceptions import (
    PermanentRequestError,
    ProviderConfigurationError,
    TokenRefreshError,
    TransientProviderError,
    WebhookNotSupportedError,
)
from app.core.http_client import get_http_client
from app.core.logging_config import log_debug, log_warning
from app.core.signing import sha256_hex, verify_hmac_signature
from app.core.time_utils import utc_now
from app.integrations.definitions import INTEGRATION_DEFINITIONS
from app.integrations.types import (
    IntegrationContext,
    IntegrationDefinition,
    IntegrationTokens,
    StandardIngestItem,
    SyncOptions,
    WebhookRegistration,
)
from app.models.enums import IntegrationProvider

SleepFunc = Callable[[float], Awaitable[None]]

DEFAULT_MAX_ATTEMPTS = 3

_DEFINITIONS: Dict[IntegrationProvider, IntegrationDefinition] = {
    definition.id: definition for definition in INTEGRATION_DEFINITIONS
}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None when the header is absent or malformed.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    return max(0.0, (retry_at - utc_now()).total_seconds())


class BaseIntegration(ABC):
    """
    Base class for all providers.

    Subclasses set `provider` and implement `get_account_info` and `sync`.
    OAuth2 providers usually only tweak the authorization parameters or the
    token request; the defaults implement the standard authorization-code
    and refresh-token grants.
    """

    provider: ClassVar[IntegrationProvider]

    # Providers whose tokens never expire set this to False; refresh then
    # fails deterministically instead of silently doing nothing.
    supports_token_refresh: ClassVar[bool] = True

    # Webhook verification
    webhook_signature_header: ClassVar[Optional[str]] = None
    requires_webhook_secret: ClassVar[bool] = False

    max_attempts: ClassVar[int] = DEFAULT_MAX_ATTEMPTS

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[SleepFunc] = None,
        app_settings: Optional[Settings] = None,
    ):
        self._http_client = http_client
        self._sleep = sleep or asyncio.sleep
        self.settings = app_settings or default_settings

    # ============================================================================
    # IDENTITY
    # ============================================================================

    @property
    def definition(self) -> IntegrationDefinition:
        return _DEFINITIONS[self.provider]

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def supports_webhooks(self) -> bool:
        """True when the provider overrides handle_webhook."""
        return type(self).handle_webhook is not BaseIntegration.handle_webhook

    def __repr__(self) -> str:
        return f"<{type(self).__name__} provider={self.provider.value}>"

    # ============================================================================
    # OAUTH
    # ============================================================================

    def get_oauth_config(self) -> OAuthProviderConfig:
        config = self.settings.get_oauth_config(self.provider.value)
        if config is None:
            raise ProviderConfigurationError(f"{self.name} OAuth not configured")
        return config

    def authorization_params(self, config: OAuthProviderConfig, state: str) -> Dict[str, str]:
        """Query parameters for the authorization redirect."""
        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if config.scopes:
            params["scope"] = " ".join(config.scopes)
        return params

    def get_authorization_url(self, state: str) -> str:
        """Build the OAuth redirect URL. Fails when OAuth is not configured."""
        config = self.get_oauth_config()
        return f"{config.authorization_url}?{urlencode(self.authorization_params(config, state))}"

    async def prepare_authorization_url(self, state: str) -> str:
        """Async hook for providers that need a round trip before redirecting."""
        return self.get_authorization_url(state)

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        data = await self._token_request(
            config,
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": config.redirect_uri,
            },
        )
        return self.tokens_from_response(data)

    async def refresh_access_token(self, refresh_token: str) -> IntegrationTokens:
        if not self.supports_token_refresh:
            raise TokenRefreshError(f"{self.name} tokens do not expire and cannot be refreshed")
        config = self.get_oauth_config()
        data = await self._token_request(
            config,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            },
        )
        tokens = self.tokens_from_response(data)
        if not tokens.refresh_token:
            # Most providers keep the old refresh token valid when they don't rotate it
            tokens.refresh_token = refresh_token
        return tokens

    async def _token_request(self, config: OAuthProviderConfig, form: Dict[str, str]) -> Dict[str, Any]:
        response = await self.fetch_with_retry(
            "POST",
            config.token_url,
            data=form,
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            raise PermanentRequestError(
                f"{self.name} token request failed: {response.status_code}",
                status_code=response.status_code,
            )
        data = response.json()
        if isinstance(data, dict) and data.get("error"):
            raise PermanentRequestError(
                f"{self.name} OAuth error: {data.get('error_description') or data['error']}",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def tokens_from_response(data: Mapping[str, Any]) -> IntegrationTokens:
        """Map a standard OAuth2 token response onto IntegrationTokens."""
        expires_in = data.get("expires_in")
        return IntegrationTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
        )

    # ============================================================================
    # CONNECTION
    # ============================================================================

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        """Best-effort liveness probe. Never raises."""
        try:
            await self.get_account_info(tokens)
            return True
        except Exception as exc:
            log_debug(f"{self.name} connection check failed: {exc}", provider=self.provider.value)
            return False

    @abstractmethod
    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        """Account metadata (account_name, account_email, workspace, ...)."""

    @abstractmethod
    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        """
        Pull items from the provider.

        Must be safe to call repeatedly with overlapping windows; dedup is
        the ingestion pipeline's job. May write a new cursor to `options`.
        """

    # ============================================================================
    # WEBHOOKS
    # ============================================================================

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        """Default scheme: hex HMAC-SHA256 of the raw body in `webhook_signature_header`."""
        if not self.webhook_signature_header:
            return False
        return verify_hmac_signature(raw_body, headers.get(self.webhook_signature_header), secret)

    def webhook_event_type(self, headers: Mapping[str, str], payload: Any) -> Optional[str]:
        """Event name for a delivery, if the provider sends one."""
        if isinstance(payload, dict):
            return payload.get("type") or payload.get("event")
        return None

    def webhook_challenge(self, payload: Any, secret: Optional[str]) -> Optional[Dict[str, Any]]:
        """Response body for URL-verification handshakes, or None for normal deliveries."""
        return None

    def match_webhook_integrations(self, payload: Any, integrations: Iterable) -> List:
        """Connections a delivery belongs to. Default: every active connection."""
        return [integration for integration in integrations if integration.is_active]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        raise WebhookNotSupportedError(f"Webhooks not supported for {self.provider.value}")

    async def register_webhook(
        self,
        context: IntegrationContext,
        delivery_url: str,
        secret: Optional[str] = None,
    ) -> WebhookRegistration:
        raise WebhookNotSupportedError(f"Webhook registration not supported for {self.provider.value}")

    async def unregister_webhook(self, context: IntegrationContext, webhook_id: str) -> None:
        raise WebhookNotSupportedError(f"Webhook unregistration not supported for {self.provider.value}")

    # ============================================================================
    # HTTP HELPERS
    # ============================================================================

    async def _client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return await get_http_client()

    async def fetch_with_retry(
        self,
        method: str,
        url: str,
        max_attempts: Optional[int] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Send a request, retrying 5xx, 429 and connection failures.

        The wait between attempts is the Retry-After header when present,
        otherwise 2 ** attempt seconds. 4xx responses other than 429 are
        returned as-is for the caller to handle.

        Raises:
            TransientProviderError: when every attempt failed transiently
        """
        attempts = max_attempts or self.max_attempts
        client = await self._client()
        last_status: Optional[int] = None
        last_retry_after: Optional[float] = None
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            delay: float = 2 ** attempt
            started = time.monotonic()
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_error = exc
                log_warning(
                    f"{self.name} request failed: {type(exc).__name__}",
                    provider=self.provider.value,
                    attempt=attempt + 1,
                    url=url,
                )
            else:
                status = response.status_code
                if status != 429 and status < 500:
                    log_debug(
                        f"{self.name} {method} {url} -> {status}",
                        duration_ms=round((time.monotonic() - started) * 1000, 2),
                    )
                    return response

                last_status = status
                last_retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if last_retry_after is not None:
                    delay = last_retry_after
                log_warning(
                    f"{self.name} transient response",
                    provider=self.provider.value,
                    status_code=status,
                    attempt=attempt + 1,
                    retry_after=last_retry_after,
                )

            if attempt < attempts - 1:
                await self._sleep(delay)

        message = f"{self.name} request failed after {attempts} attempts"
        if last_status is not None:
            message = f"{message} (last status {last_status})"
        elif last_error is not None:
            message = f"{message}: {last_error}"
        raise TransientProviderError(message, status_code=last_status, retry_after=last_retry_after)

    async def request_json(self, method: str, url: str, **kwargs) -> Any:
        """fetch_with_retry plus error mapping; returns the decoded JSON body."""
        response = await self.fetch_with_retry(method, url, **kwargs)
        if response.status_code >= 400:
            raise PermanentRequestError(
                f"{self.name} API error: {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def sleep(self, seconds: float) -> None:
        """Pause between paginated requests (injectable for tests)."""
        await self._sleep(seconds)

    @staticmethod
    def generate_content_hash(content: str) -> str:
        return sha256_hex(content)

    @staticmethod
    def verify_hmac_signature(payload, signature: Optional[str], secret: Optional[str], prefix: str = "") -> bool:
        return verify_hmac_signature(payload, signature, secret, prefix=prefix)


class ApiKeyIntegration(BaseIntegration):
    """Base for providers authenticated by a user-supplied API key."""

    supports_token_refresh: ClassVar[bool] = False

    def get_oauth_config(self) -> OAuthProviderConfig:
        raise ProviderConfigurationError(f"{self.name} uses API key authentication")

    def get_authorization_url(self, state: str) -> str:
        raise ProviderConfigurationError(f"{self.name} uses API key authentication")

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        raise ProviderConfigurationError(f"{self.name} uses API key authentication")

    async def refresh_access_token(self, refresh_token: str) -> IntegrationTokens:
        raise TokenRefreshError(f"{self.name} uses API key authentication, no refresh needed")

    @abstractmethod
    async def validate_api_key(self, api_key: str) -> bool:
        """Check a key against the provider. Never raises."""

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        return await self.validate_api_key(tokens.access_token)
