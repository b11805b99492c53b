"""
Tests for the health endpoint.
"""
import pytest
from fastapi.testclient import TestClient

from app.core.database import get_session
from app.main import app
from app.models.enums import IntegrationProvider, SyncStatus
from app.models.integration import IntegrationSyncState


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _sync_state(session, integration, sync_status: SyncStatus) -> None:
    session.add(
        IntegrationSyncState(
            user_id=integration.user_id,
            integration_id=integration.id,
            provider=integration.provider,
            status=sync_status.value,
        )
    )
    session.commit()


def test_healthy_without_integrations(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["sync_states"] == {}
    assert body["providers"] > 0


def test_paused_integration_degrades_status(client, session, integration_factory):
    _sync_state(session, integration_factory(), SyncStatus.COMPLETED)
    _sync_state(session, integration_factory(provider=IntegrationProvider.NOTION), SyncStatus.PAUSED)

    body = client.get("/api/v1/health").json()

    assert body["status"] == "degraded"
    assert body["sync_states"] == {"completed": 1, "paused": 1}
