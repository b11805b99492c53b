"""
Integration service layer.

This module orchestrates integration operations across all providers.
It provides a unified interface for connecting, syncing, and querying
integrations regardless of the underlying provider.

Architecture:
- IntegrationRegistry: provider id -> provider instance + catalog entry
- Service functions: business logic and database operations
- Provider classes: provider-specific API calls and normalization

Design Principles:
- Thin service layer -> delegate to providers
- Token encryption/decryption happens here (via credentials.py), never in providers
- Every pull goes through SyncStateStore so only one run holds an integration
- Pull syncs and webhooks share the same IngestionPipeline
"""
import uuid
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.core.config import AUTO_SYNC_PROVIDERS, Settings, settings as default_settings
from app.core.encryption import decrypt_token
from app.core.exceptions import (
    IntegrationNotFoundError,
    OAuthStateError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    TokenRefreshError,
    UnauthorizedError,
)
from app.core.logging_config import log_error, log_info, log_sync_event, log_warning
from app.core.session_utils import SessionLike, _commit, _delete, _exec, _get, _refresh, _rollback
from app.core.time_utils import ensure_utc, utc_now
from app.integrations.base import ApiKeyIntegration, BaseIntegration
from app.integrations.credentials import build_context, decrypt_tokens, needs_refresh, store_tokens
from app.integrations.ingestion import IngestionLedger, IngestionPipeline
from app.integrations.oauth import consume_oauth_state, create_oauth_state
from app.integrations.providers.browser_extension import BrowserExtensionIntegration, generate_api_key
from app.integrations.registry import IntegrationRegistry, get_registry
from app.integrations.schemas import (
    IntegrationCategoryGroup,
    IntegrationCatalogResponse,
    IntegrationConnectResponse,
    IntegrationDefinitionResponse,
    IntegrationStatusResponse,
    SyncStateResponse,
)
from app.integrations.sync_state import SyncStateStore, resolve_since
from app.integrations.types import (
    SYNC_IN_PROGRESS_CODE,
    IntegrationTokens,
    SyncError,
    SyncOptions,
    SyncResult,
    WebClip,
)
from app.integrations.webhooks import get_subscription, subscription_summary, unregister_provider_webhook
from app.models.enums import INTEGRATION_CATEGORY_LABELS, IngestedItemStatus, IntegrationProvider, SyncMethod, SyncStatus, enum_value
from app.models.integration import Integration, IntegrationSyncState
from app.models.user import User

SYNC_PAUSED_CODE = "sync_paused"
SYNC_IN_PROGRESS_MESSAGE = "Sync already in progress"

# Metadata keys surfaced as top-level status fields
_ACCOUNT_KEYS = ("account_name", "account_email", "workspace")

UserRef = Union[User, uuid.UUID]


def _user_id(user: UserRef) -> uuid.UUID:
    return user.id if isinstance(user, User) else user


def _provider_slug(provider: Union[IntegrationProvider, str]) -> str:
    if isinstance(provider, IntegrationProvider):
        return provider.value
    return IntegrationProvider.from_slug(str(provider)).value


def get_provider(provider: Union[IntegrationProvider, str], registry: Optional[IntegrationRegistry] = None) -> BaseIntegration:
    """
    Get the provider instance for a provider id.

    Raises:
        ProviderNotFoundError: If the provider is unknown or not registered
    """
    registry = registry or get_registry()
    integration_provider = registry.get(provider)
    if integration_provider is None:
        raise ProviderNotFoundError(f"Unknown integration provider: {provider}")
    return integration_provider


# ================================================================================
# LOOKUPS
# ================================================================================

async def get_integration(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
) -> Optional[Integration]:
    statement = (
        select(Integration)
        .where(Integration.user_id == _user_id(user))
        .where(Integration.provider == _provider_slug(provider))
    )
    return (await _exec(session, statement)).first()


async def require_integration(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
) -> Integration:
    integration = await get_integration(session, user, provider)
    if integration is None:
        raise IntegrationNotFoundError(f"{provider} integration not found")
    return integration


async def list_user_integrations(session: SessionLike, user: UserRef, active_only: bool = False) -> List[Integration]:
    statement = select(Integration).where(Integration.user_id == _user_id(user))
    if active_only:
        statement = statement.where(Integration.is_active == True)  # noqa: E712
    statement = statement.order_by(Integration.connected_at.asc())
    return list((await _exec(session, statement)).all())


# ================================================================================
# SYNC
# ================================================================================

def _paused_result(provider: IntegrationProvider, state: IntegrationSyncState) -> SyncResult:
    detail = f": {state.last_error}" if state.last_error else ""
    return SyncResult(
        success=False,
        provider=provider,
        errors=[
            SyncError(
                code=SYNC_PAUSED_CODE,
                message=f"Sync paused after repeated failures{detail}. Reset the integration to resume.",
                recoverable=False,
            )
        ],
    )


def _in_progress_result(provider: IntegrationProvider) -> SyncResult:
    return SyncResult(
        success=False,
        provider=provider,
        errors=[SyncError(code=SYNC_IN_PROGRESS_CODE, message=SYNC_IN_PROGRESS_MESSAGE, recoverable=True)],
    )


async def _ensure_fresh_tokens(
    session: SessionLike,
    integration: Integration,
    integration_provider: BaseIntegration,
) -> IntegrationTokens:
    """Refresh the access token when it expires within the margin; persist the new tokens."""
    tokens = decrypt_tokens(integration)
    if not needs_refresh(tokens) or not integration_provider.supports_token_refresh:
        return tokens

    try:
        refreshed = await integration_provider.refresh_access_token(tokens.refresh_token)
    except Exception as exc:
        log_warning(
            "Token refresh failed",
            provider=integration_provider.provider.value,
            integration_id=str(integration.id),
            error=str(exc),
        )
        raise TokenRefreshError(
            f"Token refresh failed for {integration_provider.name}. Please reconnect the integration."
        ) from exc

    store_tokens(integration, refreshed)
    session.add(integration)
    await _commit(session)
    await _refresh(session, integration)
    log_sync_event(integration_provider.provider.value, "token refreshed", integration_id=str(integration.id))
    return refreshed


async def run_integration_sync(
    session: SessionLike,
    integration: Integration,
    options: Optional[SyncOptions] = None,
    dry_run: bool = False,
    registry: Optional[IntegrationRegistry] = None,
    processor=None,
) -> SyncResult:
    """
    Run one pull for an already loaded integration.

    Returns a failed SyncResult (never raises) for paused rows, lost CAS and
    provider failures; TokenRefreshError is re-raised after the failure is
    recorded so callers can ask the user to reconnect.
    """
    options = options or SyncOptions()
    integration_provider = get_provider(integration.provider, registry)
    provider = integration_provider.provider
    integration_id = integration.id
    store = SyncStateStore(session)

    state = await store.ensure_sync_state(integration)
    if state.status == SyncStatus.PAUSED:
        log_sync_event(provider.value, "skipped (paused)", integration_id=str(integration_id))
        return _paused_result(provider, state)

    if not await store.start_sync_if_not_running(integration_id):
        log_sync_event(provider.value, "skipped (in progress)", integration_id=str(integration_id))
        return _in_progress_result(provider)

    log_sync_event(provider.value, "started", integration_id=str(integration_id), dry_run=dry_run)
    try:
        tokens = await _ensure_fresh_tokens(session, integration, integration_provider)

        state = await store.get(integration_id)
        run_options = options.model_copy()
        run_options.since = resolve_since(state, integration_provider.definition, options)
        if run_options.cursor is None and not options.full_sync and state is not None:
            run_options.cursor = state.cursor

        items = await integration_provider.sync(build_context(integration, tokens), run_options)
        if options.types:
            wanted = {enum_value(item_type) for item_type in options.types}
            items = [item for item in items if enum_value(item.type) in wanted]

        pipeline = IngestionPipeline(session, processor=processor)
        result = await pipeline.ingest_batch(integration, items, limit=options.limit, dry_run=dry_run)
    except TokenRefreshError as exc:
        await _rollback(session)
        await store.fail_sync(integration_id, str(exc))
        raise
    except Exception as exc:
        await _rollback(session)
        log_error(exc, provider=provider.value, integration_id=str(integration_id))
        failed = await store.fail_sync(integration_id, str(exc))
        return SyncResult(
            success=False,
            provider=provider,
            errors=[SyncError(message=str(exc), recoverable=True)],
            next_sync_at=failed.next_sync_at if failed else None,
        )

    if dry_run:
        await store.release_sync(integration_id)
        return result

    newest = max(items, key=lambda item: ensure_utc(item.metadata.timestamp), default=None)
    completed = await store.complete_sync(
        integration_id,
        items_created=result.items_created,
        items_updated=result.items_updated,
        definition=integration_provider.definition,
        cursor=run_options.cursor,
        last_item_id=newest.source_id if newest else None,
        last_item_timestamp=ensure_utc(newest.metadata.timestamp) if newest else None,
    )
    result.cursor = run_options.cursor
    result.next_sync_at = completed.next_sync_at if completed else None
    return result


async def sync_integration(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
    options: Optional[SyncOptions] = None,
    dry_run: bool = False,
    registry: Optional[IntegrationRegistry] = None,
    processor=None,
) -> SyncResult:
    """
    Pull new items from one of the user's integrations.

    Raises:
        IntegrationNotFoundError: The user has no connection for the provider
        ValueError: The connection is disabled
        TokenRefreshError: The access token expired and could not be refreshed
    """
    integration = await require_integration(session, user, provider)
    if not integration.is_active:
        raise ValueError(f"{provider} integration is disabled")
    return await run_integration_sync(
        session, integration, options=options, dry_run=dry_run, registry=registry, processor=processor
    )


def _is_pull_provider(integration_provider: BaseIntegration) -> bool:
    return integration_provider.definition.sync_method != SyncMethod.PUSH


async def sync_all_integrations(
    session: SessionLike,
    user: UserRef,
    registry: Optional[IntegrationRegistry] = None,
    processor=None,
) -> List[SyncResult]:
    """Sync every active integration of a user. Never raises; failures are in the results."""
    results: List[SyncResult] = []
    for integration in await list_user_integrations(session, user, active_only=True):
        slug = enum_value(integration.provider)
        integration_provider = (registry or get_registry()).get(slug)
        if integration_provider is None or not _is_pull_provider(integration_provider):
            continue
        try:
            results.append(
                await run_integration_sync(session, integration, registry=registry, processor=processor)
            )
        except Exception as exc:
            log_error(exc, provider=slug, integration_id=str(integration.id))
            results.append(
                SyncResult(
                    success=False,
                    provider=IntegrationProvider(slug),
                    errors=[SyncError(message=str(exc), recoverable=True)],
                )
            )
    return results


async def sync_due_integrations(
    session: SessionLike,
    limit: Optional[int] = None,
    registry: Optional[IntegrationRegistry] = None,
    processor=None,
    app_settings: Optional[Settings] = None,
) -> Dict[str, int]:
    """
    Scheduled entry point: recover stuck rows, then sync every due integration.

    Returns counters {recovered, processed, succeeded, failed, skipped}.
    """
    app_settings = app_settings or default_settings
    registry = registry or get_registry()
    store = SyncStateStore(session)
    summary = {"recovered": 0, "processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}

    summary["recovered"] = await store.recover_stale_syncs()
    # Push-only providers receive data, there is nothing to pull
    push_only = [p.provider.value for p in registry.all_instances() if not _is_pull_provider(p)]
    due = await store.get_due_sync_states(
        limit=limit or app_settings.sync_due_batch_limit, exclude_providers=push_only
    )
    integration_ids = [state.integration_id for state in due]

    for integration_id in integration_ids:
        summary["processed"] += 1
        integration = await _get(session, Integration, integration_id)
        if integration is None or not integration.is_active:
            summary["skipped"] += 1
            continue
        try:
            result = await run_integration_sync(session, integration, registry=registry, processor=processor)
        except Exception as exc:
            log_error(exc, integration_id=str(integration_id), action="sync_due")
            summary["failed"] += 1
            continue

        if result.success:
            summary["succeeded"] += 1
        elif result.in_progress_elsewhere:
            summary["skipped"] += 1
        else:
            summary["failed"] += 1

    log_info("Scheduled sync scan finished", **summary)
    return summary


async def reset_integration_sync(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
) -> IntegrationSyncState:
    """Resume a paused or failed integration."""
    integration = await require_integration(session, user, provider)
    store = SyncStateStore(session)
    state = await store.ensure_sync_state(integration)
    return await store.reset_sync_state(integration.id) or state


# ================================================================================
# CONNECT / DISCONNECT
# ================================================================================

async def get_authorization_url(
    user: UserRef,
    provider: Union[IntegrationProvider, str],
    registry: Optional[IntegrationRegistry] = None,
) -> Dict[str, str]:
    """Build the provider redirect with a fresh one-time state."""
    integration_provider = get_provider(provider, registry)
    if isinstance(integration_provider, ApiKeyIntegration):
        raise ProviderConfigurationError(f"{integration_provider.name} does not use OAuth")
    slug = integration_provider.provider.value
    state = create_oauth_state(_user_id(user), slug)
    url = await integration_provider.prepare_authorization_url(state)
    return {"authorization_url": url, "state": state}


async def _upsert_integration(
    session: SessionLike,
    user_id: uuid.UUID,
    provider: IntegrationProvider,
    tokens: IntegrationTokens,
    metadata: Dict[str, Any],
) -> Integration:
    integration = await get_integration(session, user_id, provider)
    if integration is None:
        integration = Integration(
            user_id=user_id,
            provider=provider.value,
            access_token_encrypted="",
            connected_at=utc_now(),
        )
    store_tokens(integration, tokens)
    if tokens.refresh_token is None:
        integration.refresh_token_encrypted = None
    current = integration.get_metadata()
    current.update(metadata)
    integration.set_metadata(current)
    integration.is_active = True
    session.add(integration)
    try:
        await _commit(session)
    except IntegrityError:
        # Concurrent callback for the same user/provider won the insert
        await _rollback(session)
        integration = await require_integration(session, user_id, provider)
        store_tokens(integration, tokens)
        integration.update_metadata(**metadata)
        integration.is_active = True
        session.add(integration)
        await _commit(session)
    await _refresh(session, integration)
    return integration


async def _fetch_account_info(integration_provider: BaseIntegration, tokens: IntegrationTokens) -> Dict[str, Any]:
    try:
        return await integration_provider.get_account_info(tokens) or {}
    except Exception as exc:
        log_warning(
            "Could not fetch account info",
            provider=integration_provider.provider.value,
            error=str(exc),
        )
        return {}


def _submit_initial_sync(user_id: uuid.UUID, provider: str) -> Optional[str]:
    """Queue the first pull on a worker and return the task id."""
    from app.integrations.tasks import sync_provider_task

    try:
        task = sync_provider_task.delay(str(user_id), provider)
    except Exception as exc:
        log_error(exc, provider=provider, action="queue_initial_sync")
        return None
    log_info("Queued initial sync", provider=provider, task_id=task.id)
    return task.id


async def _finish_connect(
    session: SessionLike,
    user_id: uuid.UUID,
    integration_provider: BaseIntegration,
    tokens: IntegrationTokens,
    metadata: Dict[str, Any],
    auto_sync: bool,
) -> IntegrationConnectResponse:
    provider = integration_provider.provider
    integration = await _upsert_integration(session, user_id, provider, tokens, metadata)
    await SyncStateStore(session).ensure_sync_state(integration, reset=True)

    log_info("Integration connected", provider=provider.value, integration_id=str(integration.id))
    task_id = _submit_initial_sync(user_id, provider.value) if auto_sync else None
    return IntegrationConnectResponse(
        provider=provider,
        connected=True,
        account_name=metadata.get("account_name"),
        account_email=metadata.get("account_email"),
        sync_task_id=task_id,
    )


async def connect_with_oauth_code(
    session: SessionLike,
    user: Optional[UserRef],
    provider: Union[IntegrationProvider, str],
    code: str,
    state: Optional[str] = None,
    registry: Optional[IntegrationRegistry] = None,
) -> IntegrationConnectResponse:
    """
    Complete the OAuth callback.

    Args:
        user: The signed-in user, or None when the redirect carries no session
        code: Authorization code from the provider redirect
        state: The `state` issued by get_authorization_url; required without a user

    Raises:
        OAuthStateError: State missing, expired or issued for someone else
        PermanentRequestError: The provider rejected the code
    """
    integration_provider = get_provider(provider, registry)
    slug = integration_provider.provider.value
    expected = _user_id(user) if user is not None else None
    if state is not None:
        user_id = consume_oauth_state(state, expected, slug)
    elif expected is not None:
        user_id = expected
    else:
        raise OAuthStateError("Missing OAuth state")
    if not code:
        raise ValueError("Missing authorization code")

    tokens = await integration_provider.exchange_code_for_tokens(code)
    metadata = await _fetch_account_info(integration_provider, tokens)
    return await _finish_connect(
        session, user_id, integration_provider, tokens, metadata, auto_sync=slug in AUTO_SYNC_PROVIDERS
    )


async def connect_with_api_key(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
    api_key: str,
    registry: Optional[IntegrationRegistry] = None,
) -> IntegrationConnectResponse:
    """
    Store an API key for an API-key provider after validating it.

    Raises:
        ProviderConfigurationError: The provider uses OAuth
        ValueError: The provider rejected the key
    """
    integration_provider = get_provider(provider, registry)
    if not isinstance(integration_provider, ApiKeyIntegration):
        raise ProviderConfigurationError(f"{integration_provider.name} does not use API keys")
    if not await integration_provider.validate_api_key(api_key):
        raise ValueError(f"Invalid {integration_provider.name} API key")

    tokens = IntegrationTokens(access_token=api_key)
    metadata = await _fetch_account_info(integration_provider, tokens)
    return await _finish_connect(session, _user_id(user), integration_provider, tokens, metadata, auto_sync=False)


async def generate_browser_extension_key(
    session: SessionLike,
    user: UserRef,
    registry: Optional[IntegrationRegistry] = None,
) -> str:
    """Issue (or rotate) the user's browser extension key."""
    api_key = generate_api_key()
    await connect_with_api_key(session, user, IntegrationProvider.BROWSER_EXTENSION, api_key, registry=registry)
    return api_key


async def disconnect_integration(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
    registry: Optional[IntegrationRegistry] = None,
) -> None:
    """
    Remove a connection.

    Provider-side webhooks are removed best-effort first; deleting the row
    cascades to sync state, ledger rows and webhook subscriptions.
    """
    integration = await require_integration(session, user, provider)
    integration_id = integration.id
    await unregister_provider_webhook(session, integration, registry=registry)
    await _delete(session, integration)
    await _commit(session)
    log_info("Integration disconnected", provider=_provider_slug(provider), integration_id=str(integration_id))


# ================================================================================
# STATUS / METADATA
# ================================================================================

async def _build_status(session: SessionLike, integration: Integration) -> IntegrationStatusResponse:
    metadata = integration.get_metadata()
    state = await SyncStateStore(session).get(integration.id)
    subscription = await get_subscription(session, integration)
    return IntegrationStatusResponse(
        provider=IntegrationProvider(enum_value(integration.provider)),
        connected=True,
        is_active=integration.is_active,
        connected_at=integration.connected_at,
        account_name=metadata.get("account_name"),
        account_email=metadata.get("account_email"),
        workspace=metadata.get("workspace"),
        metadata={key: value for key, value in metadata.items() if key not in _ACCOUNT_KEYS},
        sync=SyncStateResponse.model_validate(state) if state else None,
        webhook=subscription_summary(subscription),
    )


async def get_integration_status(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
) -> IntegrationStatusResponse:
    integration = await get_integration(session, user, provider)
    if integration is None:
        return IntegrationStatusResponse(provider=IntegrationProvider(_provider_slug(provider)), connected=False)
    return await _build_status(session, integration)


async def list_integration_statuses(session: SessionLike, user: UserRef) -> List[IntegrationStatusResponse]:
    return [await _build_status(session, integration) for integration in await list_user_integrations(session, user)]


async def update_integration_metadata(
    session: SessionLike,
    user: UserRef,
    provider: Union[IntegrationProvider, str],
    metadata: Dict[str, Any],
    is_active: Optional[bool] = None,
) -> IntegrationStatusResponse:
    """Merge keys into provider metadata (e.g. GitHub `selected_repositories`)."""
    integration = await require_integration(session, user, provider)
    if metadata:
        integration.update_metadata(**metadata)
    if is_active is not None:
        integration.is_active = is_active
    integration.touch()
    session.add(integration)
    await _commit(session)
    await _refresh(session, integration)
    return await _build_status(session, integration)


def get_definition_catalog(
    registry: Optional[IntegrationRegistry] = None,
    app_settings: Optional[Settings] = None,
) -> IntegrationCatalogResponse:
    """Catalog grouped by category with a per-instance `configured` flag."""
    registry = registry or get_registry()
    app_settings = app_settings or default_settings
    groups = []
    for category, definitions in registry.definitions_grouped_by_category().items():
        groups.append(
            IntegrationCategoryGroup(
                category=category,
                label=INTEGRATION_CATEGORY_LABELS[category],
                integrations=[
                    IntegrationDefinitionResponse(
                        **definition.model_dump(),
                        configured=app_settings.is_provider_configured(definition.id.value),
                    )
                    for definition in definitions
                ],
            )
        )
    return IntegrationCatalogResponse(categories=groups)


# ================================================================================
# BROWSER EXTENSION
# ================================================================================

async def _integration_for_extension_key(session: SessionLike, api_key: str) -> Optional[Integration]:
    statement = (
        select(Integration)
        .where(Integration.provider == IntegrationProvider.BROWSER_EXTENSION.value)
        .where(Integration.is_active == True)  # noqa: E712
    )
    for integration in (await _exec(session, statement)).all():
        try:
            if decrypt_token(integration.access_token_encrypted) == api_key:
                return integration
        except ValueError:
            log_warning("Undecryptable browser extension key", integration_id=str(integration.id))
    return None


async def ingest_browser_clip(
    session: SessionLike,
    api_key: str,
    clips: List[WebClip],
    processor=None,
) -> SyncResult:
    """
    Ingest clips pushed by the browser extension.

    Raises:
        UnauthorizedError: No active extension integration owns the key
        ValueError: No clips in the request
    """
    if not clips:
        raise ValueError("No clips provided")
    integration = await _integration_for_extension_key(session, api_key)
    if integration is None:
        raise UnauthorizedError("Invalid browser extension key")

    extension = BrowserExtensionIntegration()
    items = extension.process_clips(clips)
    return await IngestionPipeline(session, processor=processor).ingest_batch(integration, items)


# ================================================================================
# DEBUG
# ================================================================================

async def get_debug_snapshot(
    session: SessionLike,
    user: UserRef,
    include_items: bool = False,
    item_limit: int = 20,
) -> Dict[str, Any]:
    """Sanitized view of a user's integrations for troubleshooting. Never includes tokens."""
    user_id = _user_id(user)
    integrations = await list_user_integrations(session, user_id)
    store = SyncStateStore(session)
    ledger = IngestionLedger(session)

    snapshot: Dict[str, Any] = {"integrations": [], "sync_states": [], "stats": {}}
    for integration in integrations:
        snapshot["integrations"].append(
            {
                "id": str(integration.id),
                "provider": enum_value(integration.provider),
                "is_active": integration.is_active,
                "connected_at": integration.connected_at,
                "token_expires_at": integration.token_expires_at,
                "has_refresh_token": bool(integration.refresh_token_encrypted),
                "metadata_keys": sorted(integration.get_metadata().keys()),
            }
        )
        state = await store.get(integration.id)
        if state is not None:
            snapshot["sync_states"].append(
                {"provider": enum_value(state.provider), **SyncStateResponse.model_validate(state).model_dump()}
            )

    snapshot["stats"] = await ledger.get_integration_stats(user_id)
    if include_items:
        rows = await ledger.list_ingested_items(user_id, limit=item_limit)
        snapshot["items"] = [
            {
                "id": str(row.id),
                "provider": enum_value(row.provider),
                "source_id": row.source_id,
                "type": enum_value(row.item_type),
                "title": row.title,
                "status": enum_value(row.status),
                "error": row.error,
                "created_at": row.created_at,
            }
            for row in rows
        ]
    failed = sum(bucket.get(IngestedItemStatus.FAILED.value, 0) for bucket in snapshot["stats"].values())
    snapshot["failed_items"] = failed
    return snapshot
