"""
FastAPI router for integration endpoints.

Endpoints (mounted at /api/v1/integrations):
- GET    /definitions: Catalog grouped by category
- GET    /: The user's integration statuses
- GET    /{provider}/auth: OAuth authorization URL + state
- GET    /{provider}/callback: OAuth callback (state identifies the user)
- POST   /{provider}/connect: API-key connect
- GET    /{provider}: Status
- PATCH  /{provider}: Metadata update
- DELETE /{provider}: Disconnect
- POST   /{provider}/sync: Manual sync (inline or queued)
- POST   /sync-all: Sync every integration of the current user
- POST   /{provider}/sync/reset: Resume a paused integration
- POST   /{provider}/webhook: Inbound webhook (signature verified, no user auth)
- POST   /{provider}/webhook/register, /{provider}/webhook/reactivate
- POST   /browser-extension/clip: Clip push, authenticated by the extension key
- POST   /browser-extension/key: Issue an extension key
- GET    /debug: Sanitized troubleshooting snapshot
- POST   /cron/sync: Scheduler hook, `Authorization: Bearer {CRON_SECRET}`

Authentication:
- User endpoints require a valid JWT access token
- Users can only access their own integrations
"""
from typing import Annotated, Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlmodel import Session

from app.api.dependencies import get_bearer_token, get_current_user, verify_cron_secret
from app.core.database import get_session
from app.core.exceptions import (
    IntegrationNotFoundError,
    OAuthStateError,
    PermanentRequestError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    TokenRefreshError,
    UnauthorizedError,
    WebhookNotSupportedError,
    WebhookSignatureError,
)
from app.core.logging_config import log_error, log_warning
from app.integrations import service
from app.integrations.schemas import (
    AuthorizationUrlResponse,
    BackgroundSyncResponse,
    BrowserClipRequest,
    BrowserExtensionKeyResponse,
    CronSyncResponse,
    IntegrationApiKeyConnectRequest,
    IntegrationCatalogResponse,
    IntegrationConnectResponse,
    IntegrationMetadataUpdateRequest,
    IntegrationStatusResponse,
    IntegrationSyncRequest,
    SyncResultResponse,
    SyncStateResponse,
    WebhookRegisterRequest,
)
from app.integrations.webhooks import reactivate_webhook, receive_webhook, register_provider_webhook, subscription_summary
from app.models.enums import IntegrationProvider
from app.models.user import User

router = APIRouter(prefix="/integrations", tags=["integrations"])


def _resolve_provider(provider: str) -> IntegrationProvider:
    try:
        return IntegrationProvider.from_slug(provider)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown integration provider: {provider}")


def _raise_http(exc: Exception, fallback: str) -> NoReturn:
    """Translate service exceptions into HTTP errors."""
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, (ProviderNotFoundError, IntegrationNotFoundError)):
        log_warning(str(exc))
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (WebhookSignatureError, UnauthorizedError)):
        log_warning(str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, (OAuthStateError, TokenRefreshError, WebhookNotSupportedError, ValueError)):
        log_warning(str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PermanentRequestError):
        log_warning(str(exc), status_code=exc.status_code)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ProviderConfigurationError):
        log_error(exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    log_error(exc)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=fallback)


# ================================================================================
# CATALOG / LISTING
# ================================================================================

@router.get("/definitions", response_model=IntegrationCatalogResponse)
async def list_definitions() -> IntegrationCatalogResponse:
    """Integration catalog grouped by category, flagged with whether this instance is configured for each."""
    return service.get_definition_catalog()


@router.get("/", response_model=List[IntegrationStatusResponse])
async def list_integrations(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> List[IntegrationStatusResponse]:
    try:
        return await service.list_integration_statuses(session, current_user)
    except Exception as e:
        _raise_http(e, "Failed to list integrations")


@router.post("/sync-all", response_model=List[SyncResultResponse])
async def sync_all(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> List[SyncResultResponse]:
    results = await service.sync_all_integrations(session, current_user)
    return [SyncResultResponse(**result.model_dump()) for result in results]


@router.get("/debug")
async def debug_snapshot(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
    include_items: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=200),
) -> Dict[str, Any]:
    try:
        return await service.get_debug_snapshot(session, current_user, include_items=include_items, item_limit=limit)
    except Exception as e:
        _raise_http(e, "Failed to build debug snapshot")


@router.post("/cron/sync", response_model=CronSyncResponse, dependencies=[Depends(verify_cron_secret)])
async def cron_sync(session: Annotated[Session, Depends(get_session)]) -> CronSyncResponse:
    """Scheduler hook; the same scan Celery beat runs."""
    try:
        return CronSyncResponse(**await service.sync_due_integrations(session))
    except Exception as e:
        _raise_http(e, "Scheduled sync failed")


# ================================================================================
# BROWSER EXTENSION
# ================================================================================

@router.post("/browser-extension/clip", response_model=SyncResultResponse)
async def browser_extension_clip(
    request: BrowserClipRequest,
    api_key: Annotated[str, Depends(get_bearer_token)],
    session: Annotated[Session, Depends(get_session)],
) -> SyncResultResponse:
    try:
        result = await service.ingest_browser_clip(session, api_key, request.all_clips())
    except Exception as e:
        _raise_http(e, "Failed to ingest clip")
    return SyncResultResponse(**result.model_dump())


@router.post("/browser-extension/key", response_model=BrowserExtensionKeyResponse, status_code=status.HTTP_201_CREATED)
async def browser_extension_key(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> BrowserExtensionKeyResponse:
    try:
        return BrowserExtensionKeyResponse(api_key=await service.generate_browser_extension_key(session, current_user))
    except Exception as e:
        _raise_http(e, "Failed to generate extension key")


# ================================================================================
# CONNECT
# ================================================================================

@router.get("/{provider}/auth", response_model=AuthorizationUrlResponse)
async def authorize(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
) -> AuthorizationUrlResponse:
    """Start the OAuth flow. The returned `state` is single use and expires after ten minutes."""
    slug = _resolve_provider(provider)
    try:
        return AuthorizationUrlResponse(**await service.get_authorization_url(current_user, slug))
    except Exception as e:
        _raise_http(e, f"Failed to start {provider} authorization")


@router.get("/{provider}/callback", response_model=IntegrationConnectResponse)
async def oauth_callback(
    provider: str,
    session: Annotated[Session, Depends(get_session)],
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
) -> IntegrationConnectResponse:
    """
    OAuth redirect target.

    The provider redirect carries no bearer token, so the signed `state`
    identifies the user.
    """
    slug = _resolve_provider(provider)
    if error:
        log_warning("OAuth authorization denied", provider=slug.value, error=error)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Authorization failed: {error}")
    if not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing OAuth state")
    try:
        return await service.connect_with_oauth_code(session, None, slug, code or "", state=state)
    except Exception as e:
        _raise_http(e, f"Failed to connect {provider}")


@router.post("/{provider}/connect", response_model=IntegrationConnectResponse)
async def connect_api_key(
    provider: str,
    request: IntegrationApiKeyConnectRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> IntegrationConnectResponse:
    slug = _resolve_provider(provider)
    try:
        return await service.connect_with_api_key(session, current_user, slug, request.api_key)
    except Exception as e:
        _raise_http(e, f"Failed to connect {provider}")


# ================================================================================
# PER-PROVIDER
# ================================================================================

@router.get("/{provider}", response_model=IntegrationStatusResponse)
async def get_status(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> IntegrationStatusResponse:
    slug = _resolve_provider(provider)
    try:
        return await service.get_integration_status(session, current_user, slug)
    except Exception as e:
        _raise_http(e, "Failed to retrieve integration status")


@router.patch("/{provider}", response_model=IntegrationStatusResponse)
async def update_metadata(
    provider: str,
    request: IntegrationMetadataUpdateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> IntegrationStatusResponse:
    slug = _resolve_provider(provider)
    try:
        return await service.update_integration_metadata(
            session, current_user, slug, request.metadata, is_active=request.is_active
        )
    except Exception as e:
        _raise_http(e, "Failed to update integration")


@router.delete("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> None:
    """Disconnect an integration. Provider-side webhooks are removed best-effort."""
    slug = _resolve_provider(provider)
    try:
        await service.disconnect_integration(session, current_user, slug)
    except Exception as e:
        _raise_http(e, "Failed to disconnect integration")


@router.post("/{provider}/sync")
async def sync(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
    request: Optional[IntegrationSyncRequest] = None,
):
    """Run a sync now, or queue it on a worker with `background: true`."""
    slug = _resolve_provider(provider)
    request = request or IntegrationSyncRequest()
    try:
        await service.require_integration(session, current_user, slug)
        if request.background:
            from app.integrations.tasks import sync_provider_task

            task = sync_provider_task.delay(
                str(current_user.id), slug.value, request.to_options().model_dump(mode="json")
            )
            return BackgroundSyncResponse(provider=slug, task_id=task.id)
        result = await service.sync_integration(session, current_user, slug, request.to_options())
    except Exception as e:
        _raise_http(e, f"Failed to sync {provider}")
    return SyncResultResponse(**result.model_dump())


@router.post("/{provider}/sync/reset", response_model=SyncStateResponse)
async def reset_sync(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> SyncStateResponse:
    slug = _resolve_provider(provider)
    try:
        state = await service.reset_integration_sync(session, current_user, slug)
    except Exception as e:
        _raise_http(e, "Failed to reset sync")
    return SyncStateResponse.model_validate(state)


# ================================================================================
# WEBHOOKS
# ================================================================================

@router.post("/{provider}/webhook")
async def webhook(
    provider: str,
    request: Request,
    session: Annotated[Session, Depends(get_session)],
) -> Dict[str, Any]:
    """
    Inbound provider webhook.

    Verified against the raw body before parsing. Handshakes (Slack
    url_verification, Zoom endpoint validation, Discord ping) are answered
    directly.
    """
    slug = _resolve_provider(provider)
    raw_body = await request.body()
    try:
        return await receive_webhook(session, slug.value, raw_body, dict(request.headers))
    except Exception as e:
        _raise_http(e, "Webhook processing failed")


@router.post("/{provider}/webhook/register")
async def webhook_register(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
    request: Optional[WebhookRegisterRequest] = None,
) -> Dict[str, Any]:
    slug = _resolve_provider(provider)
    try:
        subscription = await register_provider_webhook(
            session, current_user.id, slug.value, delivery_url=request.delivery_url if request else None
        )
    except Exception as e:
        _raise_http(e, "Failed to register webhook")
    return {"provider": slug.value, "webhook_id": subscription.external_webhook_id, **subscription_summary(subscription)}


@router.post("/{provider}/webhook/reactivate")
async def webhook_reactivate(
    provider: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> Dict[str, Any]:
    slug = _resolve_provider(provider)
    try:
        subscription = await reactivate_webhook(session, current_user.id, slug.value)
    except Exception as e:
        _raise_http(e, "Failed to reactivate webhook")
    return {"provider": slug.value, **subscription_summary(subscription)}
