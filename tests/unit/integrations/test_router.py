"""
HTTP tests for the integrations router.
"""
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_current_user
from app.core.config import Settings, settings
from app.core.database import get_session
from app.core.signing import compute_hmac_sha256
from app.integrations.oauth import OAuthStateManager, create_oauth_state
from app.integrations.providers.browser_extension import BrowserExtensionIntegration
from app.integrations.providers.linear import LinearIntegration
from app.integrations.registry import IntegrationRegistry
from app.main import app

PREFIX = "/api/v1/integrations"


@pytest.fixture
def api_registry(registry):
    registry.register(BrowserExtensionIntegration())
    with patch("app.integrations.service.get_registry", return_value=registry):
        yield registry


@pytest.fixture
def client(session, user, api_registry):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_user] = lambda: user
    with patch("app.integrations.oauth._manager", OAuthStateManager(cache=None)):
        yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:
    def test_user_endpoints_require_a_token(self, anonymous_client):
        response = anonymous_client.get(f"{PREFIX}/")

        assert response.status_code == 401

    def test_cron_requires_secret(self, anonymous_client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "cron-token")

        assert anonymous_client.post(f"{PREFIX}/cron/sync").status_code == 401
        assert anonymous_client.post(
            f"{PREFIX}/cron/sync", headers={"Authorization": "Bearer wrong"}
        ).status_code == 401

    def test_cron_with_secret_runs_scan(self, anonymous_client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "cron-token")

        response = anonymous_client.post(f"{PREFIX}/cron/sync", headers={"Authorization": "Bearer cron-token"})

        assert response.status_code == 200
        assert response.json() == {"recovered": 0, "processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}


class TestCatalogAndStatus:
    def test_definitions_are_public(self, anonymous_client):
        response = anonymous_client.get(f"{PREFIX}/definitions")

        assert response.status_code == 200
        categories = response.json()["categories"]
        assert categories
        assert all(group["integrations"] for group in categories)

    def test_unknown_provider_is_404(self, client):
        assert client.get(f"{PREFIX}/myspace").status_code == 404

    def test_unconnected_status(self, client):
        response = client.get(f"{PREFIX}/google-calendar")

        assert response.status_code == 200
        assert response.json()["connected"] is False

    def test_list_and_patch(self, client, integration_factory):
        integration_factory(metadata={"account_name": "Ada"})

        patched = client.patch(f"{PREFIX}/linear", json={"metadata": {"team": "core"}})
        listed = client.get(f"{PREFIX}/")

        assert patched.status_code == 200
        assert patched.json()["metadata"] == {"team": "core"}
        assert [entry["provider"] for entry in listed.json()] == ["linear"]

    def test_disconnect_missing_integration_is_404(self, client):
        assert client.delete(f"{PREFIX}/linear").status_code == 404

    def test_disconnect(self, client, integration_factory):
        integration_factory()

        assert client.delete(f"{PREFIX}/linear").status_code == 204
        assert client.get(f"{PREFIX}/linear").json()["connected"] is False


class TestSyncEndpoints:
    def test_inline_sync(self, client, integration_factory, fake_provider, item_factory):
        integration_factory()
        fake_provider.items = [item_factory("LIN-1"), item_factory("LIN-2")]

        response = client.post(f"{PREFIX}/linear/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["items_created"] == 2

    def test_background_sync_is_queued(self, client, integration_factory):
        integration_factory()

        with patch("app.integrations.tasks.sync_provider_task") as mock_task:
            mock_task.delay.return_value = MagicMock(id="task-42")
            response = client.post(f"{PREFIX}/linear/sync", json={"background": True, "limit": 5})

        assert response.status_code == 200
        assert response.json() == {"provider": "linear", "task_id": "task-42", "status": "queued"}
        args = mock_task.delay.call_args.args
        assert args[1] == "linear"
        assert args[2]["limit"] == 5

    def test_sync_without_connection_is_404(self, client):
        assert client.post(f"{PREFIX}/linear/sync").status_code == 404

    def test_sync_all(self, client, integration_factory, fake_provider, item_factory):
        integration_factory()
        fake_provider.items = [item_factory("LIN-1")]

        response = client.post(f"{PREFIX}/sync-all")

        assert response.status_code == 200
        assert [result["provider"] for result in response.json()] == ["linear"]

    def test_reset(self, client, integration_factory):
        integration_factory()

        response = client.post(f"{PREFIX}/linear/sync/reset")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_debug_snapshot(self, client, integration_factory):
        integration_factory(access_token="very-secret")

        response = client.get(f"{PREFIX}/debug", params={"include_items": True})

        assert response.status_code == 200
        assert "very-secret" not in response.text


class TestConnectEndpoints:
    def test_callback_connects_with_state(self, client, user):
        with patch("app.integrations.tasks.sync_provider_task") as mock_task:
            mock_task.delay.return_value = MagicMock(id="task-1")
            response = client.get(
                f"{PREFIX}/linear/callback",
                params={"code": "abc", "state": create_oauth_state(user.id, "linear")},
            )

        assert response.status_code == 200
        assert response.json()["connected"] is True

    def test_callback_with_bad_state_is_400(self, client):
        response = client.get(f"{PREFIX}/linear/callback", params={"code": "abc", "state": "forged"})

        assert response.status_code == 400

    def test_callback_error_param_is_400(self, client):
        response = client.get(f"{PREFIX}/linear/callback", params={"error": "access_denied"})

        assert response.status_code == 400

    def test_extension_key_and_clip(self, client):
        issued = client.post(f"{PREFIX}/browser-extension/key")
        api_key = issued.json()["api_key"]

        clip = client.post(
            f"{PREFIX}/browser-extension/clip",
            json={"clip": {"url": "https://example.com", "title": "Example", "content": "Saved"}},
            headers={"Authorization": f"Bearer {api_key}"},
        )

        assert issued.status_code == 201
        assert clip.status_code == 200
        assert clip.json()["items_created"] == 1

    def test_clip_with_unknown_key_is_401(self, client):
        response = client.post(
            f"{PREFIX}/browser-extension/clip",
            json={"clip": {"url": "https://example.com", "title": "Example"}},
            headers={"Authorization": "Bearer cle_" + "0" * 64},
        )

        assert response.status_code == 401

    def test_api_key_connect_rejects_bad_key(self, client):
        response = client.post(f"{PREFIX}/browser-extension/connect", json={"api_key": "nope"})

        assert response.status_code == 400


class TestWebhookEndpoint:
    @pytest.fixture
    def webhook_client(self, anonymous_client):
        registry = IntegrationRegistry()
        registry.register(LinearIntegration())
        with patch("app.integrations.webhooks.get_registry", return_value=registry), patch(
            "app.integrations.webhooks.default_settings", Settings(_env_file=None, linear_webhook_secret="whsec")
        ):
            yield anonymous_client

    def test_bad_signature_is_401(self, webhook_client):
        response = webhook_client.post(
            f"{PREFIX}/linear/webhook", content=b"{}", headers={"Linear-Signature": "0" * 64}
        )

        assert response.status_code == 401

    def test_signed_delivery_is_accepted(self, webhook_client):
        body = b'{"type": "Issue", "data": {}}'

        response = webhook_client.post(
            f"{PREFIX}/linear/webhook",
            content=body,
            headers={"Linear-Signature": compute_hmac_sha256(body, "whsec"), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["received"] is True
