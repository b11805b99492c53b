"""
Inbound webhook delivery path and subscription health.

Order of operations for a delivery:
1. resolve the provider (unknown -> ProviderNotFoundError)
2. verify the signature over the raw body before parsing anything
3. parse, answer provider handshakes (Slack url_verification, Zoom
   endpoint validation, Discord ping)
4. route to the matching integrations and run their items through the
   same IngestionPipeline as a pull sync
5. record per-subscription health; 10 consecutive failures deactivate
   the subscription until the user reactivates it
"""
import json
import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.core.config import WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD, Settings, settings as default_settings
from app.core.encryption import encrypt_optional
from app.core.exceptions import (
    IntegrationNotFoundError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    WebhookNotSupportedError,
    WebhookSignatureError,
)
from app.core.logging_config import log_error, log_webhook_event
from app.core.session_utils import SessionLike, _commit, _exec, _get, _refresh, _rollback
from app.core.time_utils import utc_now
from app.integrations.credentials import build_context
from app.integrations.ingestion import IngestionPipeline
from app.integrations.registry import IntegrationRegistry, get_registry
from app.models.enums import enum_value
from app.models.integration import Integration, WebhookSubscription


def _resolve_provider(registry: IntegrationRegistry, provider: str):
    integration = registry.get(provider)
    if integration is None:
        raise ProviderNotFoundError(f"Unknown integration provider: {provider}")
    return integration


async def get_subscription(session: SessionLike, integration: Integration) -> Optional[WebhookSubscription]:
    statement = (
        select(WebhookSubscription)
        .where(WebhookSubscription.integration_id == integration.id)
        .where(WebhookSubscription.provider == enum_value(integration.provider))
    )
    return (await _exec(session, statement)).first()


async def get_or_create_subscription(session: SessionLike, integration: Integration) -> WebhookSubscription:
    """Subscriptions are created lazily on the first delivery."""
    subscription = await get_subscription(session, integration)
    if subscription is not None:
        return subscription

    subscription = WebhookSubscription(
        user_id=integration.user_id,
        integration_id=integration.id,
        provider=enum_value(integration.provider),
    )
    session.add(subscription)
    try:
        await _commit(session)
    except IntegrityError:
        # A concurrent delivery created it first
        await _rollback(session)
        existing = await get_subscription(session, integration)
        if existing is None:
            raise
        return existing
    await _refresh(session, subscription)
    return subscription


async def record_webhook_received(session: SessionLike, subscription_id: uuid.UUID) -> Optional[WebhookSubscription]:
    subscription = await _get(session, WebhookSubscription, subscription_id)
    if subscription is None:
        return None
    subscription.error_count = 0
    subscription.last_error = None
    subscription.last_received_at = utc_now()
    subscription.touch()
    session.add(subscription)
    await _commit(session)
    return subscription


async def record_webhook_error(
    session: SessionLike,
    subscription_id: uuid.UUID,
    error: str,
) -> Optional[WebhookSubscription]:
    subscription = await _get(session, WebhookSubscription, subscription_id)
    if subscription is None:
        return None
    subscription.error_count = (subscription.error_count or 0) + 1
    subscription.last_error = error
    subscription.is_active = subscription.error_count < WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD
    subscription.touch()
    session.add(subscription)
    await _commit(session)

    if not subscription.is_active:
        log_webhook_event(
            enum_value(subscription.provider),
            "subscription deactivated",
            integration_id=str(subscription.integration_id),
            error_count=subscription.error_count,
        )
    return subscription


async def receive_webhook(
    session: SessionLike,
    provider: str,
    raw_body: bytes,
    headers: Mapping[str, str],
    registry: Optional[IntegrationRegistry] = None,
    app_settings: Optional[Settings] = None,
    processor=None,
) -> Dict[str, Any]:
    """
    Verify, parse and ingest one webhook delivery.

    Raises:
        ProviderNotFoundError: unknown provider
        ProviderConfigurationError: the provider requires a secret and none is configured
        WebhookSignatureError: signature missing or invalid
        ValueError: body or required headers are malformed
    """
    registry = registry or get_registry()
    app_settings = app_settings or default_settings
    integration_provider = _resolve_provider(registry, provider)
    slug = integration_provider.provider.value
    headers = {key.lower(): value for key, value in headers.items()}

    secret = app_settings.get_webhook_secret(slug)
    if integration_provider.requires_webhook_secret and not secret:
        raise ProviderConfigurationError(f"{integration_provider.name} webhook secret not configured")
    if secret and not integration_provider.verify_webhook_request(raw_body, headers, secret):
        log_webhook_event(slug, "signature rejected", level=logging.WARNING)
        raise WebhookSignatureError("Invalid webhook signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"Invalid webhook payload: {exc}") from exc

    challenge = integration_provider.webhook_challenge(payload, secret)
    if challenge is not None:
        log_webhook_event(slug, "handshake answered")
        return challenge

    event_type = integration_provider.webhook_event_type(headers, payload)
    statement = select(Integration).where(Integration.provider == slug).where(Integration.is_active == True)  # noqa: E712
    candidates = list((await _exec(session, statement)).all())
    matches = integration_provider.match_webhook_integrations(payload, candidates)

    summary: Dict[str, Any] = {
        "received": True,
        "provider": slug,
        "event": event_type,
        "integrations": len(matches),
        "items_created": 0,
        "items_updated": 0,
        "items_skipped": 0,
        "errors": [],
    }
    signature = headers.get(integration_provider.webhook_signature_header or "")
    pipeline = IngestionPipeline(session, processor=processor)

    for integration in matches:
        # An earlier iteration may have rolled back and expired this row
        await _refresh(session, integration)
        integration_id = integration.id
        subscription = await get_or_create_subscription(session, integration)
        if not subscription.is_active:
            log_webhook_event(slug, "skipped inactive subscription", integration_id=str(integration_id))
            continue
        subscription_id = subscription.id

        try:
            items = await integration_provider.handle_webhook(payload, signature=signature, event_type=event_type)
            result = await pipeline.ingest_batch(integration, items)
        except WebhookNotSupportedError:
            raise
        except Exception as exc:
            await _rollback(session)
            log_error(exc, provider=slug, integration_id=str(integration_id))
            await record_webhook_error(session, subscription_id, str(exc))
            summary["errors"].append({"integration_id": str(integration_id), "message": str(exc)})
            continue

        summary["items_created"] += result.items_created
        summary["items_updated"] += result.items_updated
        summary["items_skipped"] += result.items_skipped
        summary["errors"].extend(
            {"integration_id": str(integration_id), "item_id": error.item_id, "message": error.message}
            for error in result.errors
        )
        await record_webhook_received(session, subscription_id)

    log_webhook_event(
        slug,
        "processed",
        event_type=event_type,
        integrations=len(matches),
        created=summary["items_created"],
        updated=summary["items_updated"],
    )
    return summary


async def _load_integration(session: SessionLike, user_id: uuid.UUID, provider: str) -> Integration:
    statement = select(Integration).where(Integration.user_id == user_id).where(Integration.provider == provider)
    integration = (await _exec(session, statement)).first()
    if integration is None:
        raise IntegrationNotFoundError(f"{provider} integration not found")
    return integration


async def register_provider_webhook(
    session: SessionLike,
    user_id: uuid.UUID,
    provider: str,
    delivery_url: Optional[str] = None,
    registry: Optional[IntegrationRegistry] = None,
    app_settings: Optional[Settings] = None,
) -> WebhookSubscription:
    """Create provider-side hooks (e.g. GitHub repository hooks) and store the subscription."""
    registry = registry or get_registry()
    app_settings = app_settings or default_settings
    integration_provider = _resolve_provider(registry, provider)
    slug = integration_provider.provider.value
    integration = await _load_integration(session, user_id, slug)

    # Deliveries are verified against the instance-wide secret
    secret = app_settings.get_webhook_secret(slug)
    if integration_provider.requires_webhook_secret and not secret:
        raise ProviderConfigurationError(f"{integration_provider.name} webhook secret not configured")

    url = delivery_url or app_settings.webhook_delivery_url(slug)
    registration = await integration_provider.register_webhook(build_context(integration), url, secret)

    subscription = await get_or_create_subscription(session, integration)
    subscription.external_webhook_id = registration.webhook_id
    subscription.delivery_url = url
    subscription.secret_encrypted = encrypt_optional(registration.secret)
    subscription.set_events(registration.events)
    subscription.is_active = True
    subscription.error_count = 0
    subscription.last_error = None
    subscription.touch()
    session.add(subscription)
    await _commit(session)
    await _refresh(session, subscription)

    log_webhook_event(slug, "registered", integration_id=str(integration.id), webhook_id=registration.webhook_id)
    return subscription


async def unregister_provider_webhook(
    session: SessionLike,
    integration: Integration,
    registry: Optional[IntegrationRegistry] = None,
) -> bool:
    """Best-effort removal of provider-side hooks. Never raises."""
    registry = registry or get_registry()
    slug = enum_value(integration.provider)
    subscription = await get_subscription(session, integration)
    if subscription is None or not subscription.external_webhook_id:
        return False

    integration_provider = registry.get(slug)
    if integration_provider is None:
        return False
    try:
        await integration_provider.unregister_webhook(build_context(integration), subscription.external_webhook_id)
    except Exception as exc:
        log_error(exc, provider=slug, integration_id=str(integration.id), action="unregister_webhook")
        return False
    log_webhook_event(slug, "unregistered", integration_id=str(integration.id))
    return True


async def reactivate_webhook(session: SessionLike, user_id: uuid.UUID, provider: str) -> WebhookSubscription:
    integration = await _load_integration(session, user_id, provider)
    subscription = await get_or_create_subscription(session, integration)
    subscription.is_active = True
    subscription.error_count = 0
    subscription.last_error = None
    subscription.touch()
    session.add(subscription)
    await _commit(session)
    await _refresh(session, subscription)
    log_webhook_event(provider, "reactivated", integration_id=str(integration.id))
    return subscription


def subscription_summary(subscription: Optional[WebhookSubscription]) -> Optional[Dict[str, Any]]:
    if subscription is None:
        return None
    return {
        "is_active": subscription.is_active,
        "error_count": subscription.error_count,
        "last_received_at": subscription.last_received_at,
        "last_error": subscription.last_error,
        "events": subscription.get_events(),
    }

