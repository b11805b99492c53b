"""
Unit tests for the Celery task wrappers.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.integrations import tasks
from app.integrations.types import SyncOptions, SyncResult
from app.models.enums import IntegrationProvider


@pytest.fixture
def worker_session():
    session = MagicMock()
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    with patch("app.integrations.tasks.get_async_session_factory", return_value=factory):
        yield session


class TestSyncProviderTask:
    def test_options_are_rebuilt_and_result_serialized(self, worker_session):
        user_id = uuid.uuid4()
        result = SyncResult(success=True, provider=IntegrationProvider.LINEAR, items_created=2)

        with patch("app.integrations.tasks.sync_integration", new=AsyncMock(return_value=result)) as mock_sync:
            payload = tasks.sync_provider_task.run(str(user_id), "linear", {"full_sync": True, "limit": 10})

        assert payload["success"] is True
        assert payload["provider"] == "linear"
        assert payload["items_created"] == 2
        args = mock_sync.await_args.args
        assert args[0] is worker_session
        assert args[1] == user_id
        assert args[3] == SyncOptions(full_sync=True, limit=10)

    def test_errors_propagate_for_celery_retry_accounting(self, worker_session):
        with patch(
            "app.integrations.tasks.sync_integration", new=AsyncMock(side_effect=RuntimeError("provider down"))
        ):
            with pytest.raises(RuntimeError):
                tasks.sync_provider_task.run(str(uuid.uuid4()), "linear")


class TestScheduledTasks:
    def test_sync_all_returns_one_entry_per_provider(self, worker_session):
        results = [
            SyncResult(success=True, provider=IntegrationProvider.LINEAR),
            SyncResult(success=False, provider=IntegrationProvider.NOTION),
        ]
        with patch("app.integrations.tasks.sync_all_integrations", new=AsyncMock(return_value=results)):
            payload = tasks.sync_all_providers_task.run(str(uuid.uuid4()))

        assert [entry["provider"] for entry in payload] == ["linear", "notion"]

    def test_due_scan_passes_limit(self, worker_session):
        summary = {"recovered": 0, "processed": 3, "succeeded": 3, "failed": 0, "skipped": 0}
        with patch(
            "app.integrations.tasks.sync_due_integrations", new=AsyncMock(return_value=summary)
        ) as mock_scan:
            assert tasks.sync_due_integrations_task.run(25) == summary

        mock_scan.assert_awaited_once_with(worker_session, 25)
