"""
Unit tests for inbound webhook deliveries and subscription health.
"""
import json
import time

import pytest
from sqlmodel import select

from app.core.config import WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD, Settings
from app.core.exceptions import ProviderConfigurationError, ProviderNotFoundError, WebhookSignatureError
from app.core.signing import compute_hmac_sha256
from app.integrations.providers.linear import LinearIntegration
from app.integrations.providers.slack import SlackIntegration
from app.integrations.providers.zoom import ZoomIntegration
from app.integrations.registry import IntegrationRegistry
from app.integrations.types import WebhookRegistration
from app.integrations.webhooks import (
    get_or_create_subscription,
    get_subscription,
    reactivate_webhook,
    receive_webhook,
    record_webhook_error,
    register_provider_webhook,
    subscription_summary,
    unregister_provider_webhook,
)
from app.models.enums import IntegrationProvider
from app.models.integration import IngestedItem

LINEAR_SECRET = "linear-webhook-secret"
SLACK_SECRET = "slack-signing-secret"


@pytest.fixture
def webhook_settings() -> Settings:
    return Settings(_env_file=None, linear_webhook_secret=LINEAR_SECRET, slack_signing_secret=SLACK_SECRET)


@pytest.fixture
def webhook_registry() -> IntegrationRegistry:
    registry = IntegrationRegistry()
    registry.register(LinearIntegration())
    registry.register(SlackIntegration())
    return registry


def _issue_payload(issue_id="issue-1", title="Ship onboarding", organization_id="org-1"):
    return {
        "action": "create",
        "type": "Issue",
        "organizationId": organization_id,
        "data": {
            "id": issue_id,
            "identifier": "ENG-12",
            "title": title,
            "description": "Write the welcome email",
            "url": "https://linear.app/acme/issue/ENG-12",
            "priority": 1,
            "createdAt": "2026-10-01T09:00:00.000Z",
            "updatedAt": "2026-10-02T09:00:00.000Z",
            "state": {"name": "Todo", "type": "unstarted"},
        },
    }


def _linear_delivery(payload):
    body = json.dumps(payload).encode()
    return body, {"Linear-Signature": compute_hmac_sha256(body, LINEAR_SECRET)}


def _slack_delivery(payload, timestamp=None):
    body = json.dumps(payload).encode()
    timestamp = str(timestamp or int(time.time()))
    signature = "v0=" + compute_hmac_sha256(b"v0:" + timestamp.encode() + b":" + body, SLACK_SECRET)
    return body, {"X-Slack-Request-Timestamp": timestamp, "X-Slack-Signature": signature}


class TestVerification:
    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected_before_parsing(self, session, webhook_registry, webhook_settings):
        with pytest.raises(WebhookSignatureError):
            await receive_webhook(
                session,
                "linear",
                b"not even json",
                {"Linear-Signature": "0" * 64},
                registry=webhook_registry,
                app_settings=webhook_settings,
            )

    @pytest.mark.asyncio
    async def test_missing_signature_is_rejected(self, session, webhook_registry, webhook_settings):
        with pytest.raises(WebhookSignatureError):
            await receive_webhook(
                session, "linear", b"{}", {}, registry=webhook_registry, app_settings=webhook_settings
            )

    @pytest.mark.asyncio
    async def test_required_secret_must_be_configured(self, session, webhook_registry):
        body, headers = _linear_delivery(_issue_payload())

        with pytest.raises(ProviderConfigurationError):
            await receive_webhook(
                session, "linear", body, headers, registry=webhook_registry, app_settings=Settings(_env_file=None)
            )

    @pytest.mark.asyncio
    async def test_unsigned_zoom_delivery_needs_secret(self, session):
        registry = IntegrationRegistry()
        registry.register(ZoomIntegration())

        with pytest.raises(ProviderConfigurationError):
            await receive_webhook(
                session,
                "zoom",
                b'{"event": "recording.completed"}',
                {},
                registry=registry,
                app_settings=Settings(_env_file=None),
            )

    @pytest.mark.asyncio
    async def test_stale_slack_timestamp_is_rejected(self, session, webhook_registry, webhook_settings):
        body, headers = _slack_delivery({"type": "event_callback"}, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookSignatureError):
            await receive_webhook(
                session, "slack", body, headers, registry=webhook_registry, app_settings=webhook_settings
            )

    @pytest.mark.asyncio
    async def test_unknown_provider(self, session, webhook_registry, webhook_settings):
        with pytest.raises(ProviderNotFoundError):
            await receive_webhook(
                session, "myspace", b"{}", {}, registry=webhook_registry, app_settings=webhook_settings
            )

    @pytest.mark.asyncio
    async def test_signed_malformed_body_is_a_value_error(self, session, webhook_registry, webhook_settings):
        body = b"{not json"
        headers = {"Linear-Signature": compute_hmac_sha256(body, LINEAR_SECRET)}

        with pytest.raises(ValueError):
            await receive_webhook(
                session, "linear", body, headers, registry=webhook_registry, app_settings=webhook_settings
            )


class TestDelivery:
    @pytest.mark.asyncio
    async def test_slack_url_verification_is_echoed(self, session, webhook_registry, webhook_settings):
        body, headers = _slack_delivery({"type": "url_verification", "challenge": "abc123"})

        response = await receive_webhook(
            session, "slack", body, headers, registry=webhook_registry, app_settings=webhook_settings
        )

        assert response == {"challenge": "abc123"}

    @pytest.mark.asyncio
    async def test_delivery_is_routed_to_matching_workspace(
        self, session, webhook_registry, webhook_settings, integration_factory, processor
    ):
        integration_factory(metadata={"organization_id": "org-1"})
        body, headers = _linear_delivery(_issue_payload())

        summary = await receive_webhook(
            session,
            "linear",
            body,
            headers,
            registry=webhook_registry,
            app_settings=webhook_settings,
            processor=processor,
        )

        assert summary["integrations"] == 1
        assert summary["items_created"] == 1
        assert summary["event"] == "Issue"
        assert processor.processed == ["issue-1"]

    @pytest.mark.asyncio
    async def test_other_workspace_is_ignored(
        self, session, webhook_registry, webhook_settings, integration_factory, processor
    ):
        integration_factory(metadata={"organization_id": "org-2"})
        body, headers = _linear_delivery(_issue_payload(organization_id="org-1"))

        summary = await receive_webhook(
            session,
            "linear",
            body,
            headers,
            registry=webhook_registry,
            app_settings=webhook_settings,
            processor=processor,
        )

        assert summary["integrations"] == 0
        assert session.exec(select(IngestedItem)).all() == []

    @pytest.mark.asyncio
    async def test_redelivery_and_edits_share_the_ledger(
        self, session, webhook_registry, webhook_settings, integration_factory, processor
    ):
        integration_factory(metadata={"organization_id": "org-1"})
        for payload in (_issue_payload(), _issue_payload(), _issue_payload(title="Ship onboarding v2")):
            body, headers = _linear_delivery(payload)
            last = await receive_webhook(
                session,
                "linear",
                body,
                headers,
                registry=webhook_registry,
                app_settings=webhook_settings,
                processor=processor,
            )

        assert last["items_updated"] == 1
        assert len(session.exec(select(IngestedItem)).all()) == 1
        assert processor.processed == ["issue-1", "issue-1"]

    @pytest.mark.asyncio
    async def test_successful_delivery_records_health(
        self, session, webhook_registry, webhook_settings, integration_factory, processor
    ):
        integration = integration_factory(metadata={"organization_id": "org-1"})
        body, headers = _linear_delivery(_issue_payload())

        await receive_webhook(
            session,
            "linear",
            body,
            headers,
            registry=webhook_registry,
            app_settings=webhook_settings,
            processor=processor,
        )

        subscription = await get_subscription(session, integration)
        assert subscription.last_received_at is not None
        assert subscription.error_count == 0


class TestSubscriptionHealth:
    @pytest.mark.asyncio
    async def test_handler_failure_is_counted_per_subscription(
        self, session, webhook_registry, webhook_settings, integration_factory, processor
    ):
        integration = integration_factory(metadata={"organization_id": "org-1"})
        payload = _issue_payload()
        del payload["data"]["identifier"]
        body, headers = _linear_delivery(payload)

        summary = await receive_webhook(
            session,
            "linear",
            body,
            headers,
            registry=webhook_registry,
            app_settings=webhook_settings,
            processor=processor,
        )

        assert len(summary["errors"]) == 1
        subscription = await get_subscription(session, integration)
        assert subscription.error_count == 1
        assert subscription.is_active is True

    @pytest.mark.asyncio
    async def test_subscription_deactivates_after_threshold(self, session, user, integration_factory):
        integration = integration_factory(metadata={"organization_id": "org-1"})
        subscription = await get_or_create_subscription(session, integration)
        for attempt in range(WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD):
            updated = await record_webhook_error(session, subscription.id, f"failure {attempt}")

        assert updated.is_active is False
        assert subscription_summary(updated)["error_count"] == WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD

    @pytest.mark.asyncio
    async def test_inactive_subscription_is_skipped_until_reactivated(
        self, session, user, webhook_registry, webhook_settings, integration_factory, processor
    ):
        integration = integration_factory(metadata={"organization_id": "org-1"})
        subscription = await get_or_create_subscription(session, integration)
        for attempt in range(WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD):
            await record_webhook_error(session, subscription.id, "boom")
        body, headers = _linear_delivery(_issue_payload())

        skipped = await receive_webhook(
            session,
            "linear",
            body,
            headers,
            registry=webhook_registry,
            app_settings=webhook_settings,
            processor=processor,
        )
        reactivated = await reactivate_webhook(session, user.id, IntegrationProvider.LINEAR.value)
        delivered = await receive_webhook(
            session,
            "linear",
            body,
            headers,
            registry=webhook_registry,
            app_settings=webhook_settings,
            processor=processor,
        )

        assert skipped["items_created"] == 0
        assert reactivated.is_active is True
        assert reactivated.error_count == 0
        assert delivered["items_created"] == 1

    def test_summary_of_missing_subscription(self):
        assert subscription_summary(None) is None


class _RecordingLinear(LinearIntegration):
    def __init__(self, fail_unregister=False):
        super().__init__()
        self.fail_unregister = fail_unregister
        self.registered = []
        self.unregistered = []

    async def register_webhook(self, context, delivery_url, secret=None):
        self.registered.append((delivery_url, secret))
        return WebhookRegistration(webhook_id="hook-42", secret=secret, events=["Issue", "Comment"])

    async def unregister_webhook(self, context, webhook_id):
        if self.fail_unregister:
            raise RuntimeError("provider unavailable")
        self.unregistered.append(webhook_id)


class TestRegistration:
    @pytest.mark.asyncio
    async def test_registration_stores_subscription(self, session, user, webhook_settings, integration_factory):
        provider = _RecordingLinear()
        registry = IntegrationRegistry()
        registry.register(provider)
        integration_factory()

        subscription = await register_provider_webhook(
            session, user.id, "linear", registry=registry, app_settings=webhook_settings
        )

        assert provider.registered == [(webhook_settings.webhook_delivery_url("linear"), LINEAR_SECRET)]
        assert subscription.external_webhook_id == "hook-42"
        assert subscription.get_events() == ["Issue", "Comment"]
        assert subscription.secret_encrypted != LINEAR_SECRET
        assert subscription.is_active is True

    @pytest.mark.asyncio
    async def test_registration_requires_secret(self, session, user, integration_factory):
        registry = IntegrationRegistry()
        registry.register(_RecordingLinear())
        integration_factory()

        with pytest.raises(ProviderConfigurationError):
            await register_provider_webhook(
                session, user.id, "linear", registry=registry, app_settings=Settings(_env_file=None)
            )

    @pytest.mark.asyncio
    async def test_unregister_is_best_effort(self, session, user, webhook_settings, integration_factory):
        integration = integration_factory()
        failing = _RecordingLinear(fail_unregister=True)
        registry = IntegrationRegistry()
        registry.register(failing)
        await register_provider_webhook(session, user.id, "linear", registry=registry, app_settings=webhook_settings)

        assert await unregister_provider_webhook(session, integration, registry=registry) is False

        working = _RecordingLinear()
        registry = IntegrationRegistry()
        registry.register(working)
        assert await unregister_provider_webhook(session, integration, registry=registry) is True
        assert working.unregistered == ["hook-42"]

    @pytest.mark.asyncio
    async def test_unregister_without_subscription(self, session, integration_factory, webhook_registry):
        integration = integration_factory()

        assert await unregister_provider_webhook(session, integration, registry=webhook_registry) is False
