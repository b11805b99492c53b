"""
Unit tests for sync state transitions, the due scan and stale recovery.
"""
import uuid
from datetime import timedelta

import pytest

from app.core.config import DEFAULT_SYNC_INTERVAL_MINUTES, DEFAULT_SYNC_WINDOW_DAYS, SYNC_FAILURE_PAUSE_THRESHOLD
from app.core.time_utils import ensure_utc, utc_now
from app.integrations.definitions import INTEGRATION_DEFINITIONS
from app.integrations.sync_state import SyncStateStore, resolve_since, sync_interval_minutes
from app.integrations.types import SyncOptions
from app.models.enums import IntegrationProvider, SyncStatus
from app.models.integration import IntegrationSyncState

DEFINITIONS = {definition.id: definition for definition in INTEGRATION_DEFINITIONS}


@pytest.fixture
def store(session) -> SyncStateStore:
    return SyncStateStore(session)


class TestEnsureSyncState:
    @pytest.mark.asyncio
    async def test_creates_pending_row_due_now(self, store, integration_factory):
        integration = integration_factory()

        state = await store.ensure_sync_state(integration)

        assert state.status == SyncStatus.PENDING
        assert ensure_utc(state.next_sync_at) <= utc_now()
        assert state.error_count == 0

    @pytest.mark.asyncio
    async def test_existing_row_is_returned_untouched(self, store, integration_factory):
        integration = integration_factory()
        first = await store.ensure_sync_state(integration)
        await store.start_sync_if_not_running(integration.id)
        await store.fail_sync(integration.id, "boom")

        again = await store.ensure_sync_state(integration)

        assert again.id == first.id
        assert again.status == SyncStatus.FAILED
        assert again.error_count == 1

    @pytest.mark.asyncio
    async def test_reset_clears_errors_on_reconnect(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)
        await store.start_sync_if_not_running(integration.id)
        await store.fail_sync(integration.id, "boom")

        state = await store.ensure_sync_state(integration, reset=True)

        assert state.status == SyncStatus.PENDING
        assert state.error_count == 0
        assert state.last_error is None


class TestStartSync:
    @pytest.mark.asyncio
    async def test_only_one_claim_succeeds(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)

        first = await store.start_sync_if_not_running(integration.id)
        second = await store.start_sync_if_not_running(integration.id)

        assert first is True
        assert second is False
        assert (await store.get(integration.id)).status == SyncStatus.SYNCING

    @pytest.mark.asyncio
    async def test_paused_row_cannot_start(self, store, session, integration_factory):
        integration = integration_factory()
        state = await store.ensure_sync_state(integration)
        state.status = SyncStatus.PAUSED
        session.add(state)
        session.commit()

        assert await store.start_sync_if_not_running(integration.id) is False

    @pytest.mark.asyncio
    async def test_completed_and_failed_rows_can_start(self, store, integration_factory):
        completed = integration_factory(IntegrationProvider.LINEAR)
        failed = integration_factory(IntegrationProvider.TODOIST)
        for integration in (completed, failed):
            await store.ensure_sync_state(integration)
            await store.start_sync_if_not_running(integration.id)
        await store.complete_sync(completed.id, 1, 0)
        await store.fail_sync(failed.id, "boom")

        assert await store.start_sync_if_not_running(completed.id) is True
        assert await store.start_sync_if_not_running(failed.id) is True


class TestCompleteAndFail:
    @pytest.mark.asyncio
    async def test_complete_resets_errors_and_schedules_next_run(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)
        await store.start_sync_if_not_running(integration.id)
        await store.fail_sync(integration.id, "boom")
        await store.start_sync_if_not_running(integration.id)
        before = utc_now()

        state = await store.complete_sync(
            integration.id,
            items_created=3,
            items_updated=1,
            definition=DEFINITIONS[IntegrationProvider.LINEAR],
            cursor="cursor-1",
            last_item_id="LIN-9",
            last_item_timestamp=before,
        )

        assert state.status == SyncStatus.COMPLETED
        assert state.error_count == 0
        assert state.last_error is None
        assert state.total_items_synced == 4
        assert state.items_synced_this_run == 4
        assert state.cursor == "cursor-1"
        assert state.last_item_id == "LIN-9"
        interval = sync_interval_minutes(DEFINITIONS[IntegrationProvider.LINEAR])
        assert ensure_utc(state.next_sync_at) >= before + timedelta(minutes=interval) - timedelta(seconds=1)

    @pytest.mark.asyncio
    async def test_totals_accumulate_across_runs(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)
        for created in (2, 5):
            await store.start_sync_if_not_running(integration.id)
            await store.complete_sync(integration.id, items_created=created, items_updated=0)

        state = await store.get(integration.id)
        assert state.total_items_synced == 7
        assert state.items_synced_this_run == 5

    @pytest.mark.asyncio
    async def test_complete_keeps_cursor_when_none_given(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)
        await store.start_sync_if_not_running(integration.id)
        await store.complete_sync(integration.id, 0, 0, cursor="kept")
        await store.start_sync_if_not_running(integration.id)

        state = await store.complete_sync(integration.id, 0, 0)

        assert state.cursor == "kept"

    @pytest.mark.asyncio
    async def test_failure_leaves_next_sync_at_alone(self, store, integration_factory):
        integration = integration_factory()
        created = await store.ensure_sync_state(integration)
        scheduled = created.next_sync_at
        await store.start_sync_if_not_running(integration.id)

        state = await store.fail_sync(integration.id, "provider down")

        assert state.status == SyncStatus.FAILED
        assert state.last_error == "provider down"
        assert state.last_error_at is not None
        assert state.next_sync_at == scheduled

    @pytest.mark.asyncio
    async def test_pauses_after_threshold_failures(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)

        for attempt in range(1, SYNC_FAILURE_PAUSE_THRESHOLD + 1):
            assert await store.start_sync_if_not_running(integration.id) is True
            state = await store.fail_sync(integration.id, f"failure {attempt}")
            expected = SyncStatus.PAUSED if attempt == SYNC_FAILURE_PAUSE_THRESHOLD else SyncStatus.FAILED
            assert state.status == expected

        assert state.error_count == SYNC_FAILURE_PAUSE_THRESHOLD
        assert await store.start_sync_if_not_running(integration.id) is False

    @pytest.mark.asyncio
    async def test_reset_resumes_paused_row(self, store, session, integration_factory):
        integration = integration_factory()
        state = await store.ensure_sync_state(integration)
        state.status = SyncStatus.PAUSED
        state.error_count = SYNC_FAILURE_PAUSE_THRESHOLD
        session.add(state)
        session.commit()

        reset = await store.reset_sync_state(integration.id)

        assert reset.status == SyncStatus.PENDING
        assert reset.error_count == 0
        assert await store.start_sync_if_not_running(integration.id) is True

    @pytest.mark.asyncio
    async def test_release_returns_row_without_recording_a_run(self, store, integration_factory):
        integration = integration_factory()
        await store.ensure_sync_state(integration)
        await store.start_sync_if_not_running(integration.id)

        released = await store.release_sync(integration.id)

        assert released.status == SyncStatus.PENDING
        assert released.last_successful_sync_at is None
        assert released.total_items_synced == 0

    @pytest.mark.asyncio
    async def test_missing_row_is_logged_not_raised(self, store):
        assert await store.complete_sync(uuid.uuid4(), 0, 0) is None
        assert await store.fail_sync(uuid.uuid4(), "boom") is None


class TestDueScan:
    @pytest.mark.asyncio
    async def test_due_scan_skips_future_syncing_and_paused_rows(self, store, session, integration_factory):
        due = integration_factory(IntegrationProvider.LINEAR)
        future = integration_factory(IntegrationProvider.TODOIST)
        running = integration_factory(IntegrationProvider.GITHUB)
        paused = integration_factory(IntegrationProvider.NOTION)
        for integration in (due, future, running, paused):
            await store.ensure_sync_state(integration)

        future_state = await store.get(future.id)
        future_state.next_sync_at = utc_now() + timedelta(hours=1)
        paused_state = await store.get(paused.id)
        paused_state.status = SyncStatus.PAUSED
        session.add_all([future_state, paused_state])
        session.commit()
        await store.start_sync_if_not_running(running.id)

        rows = await store.get_due_sync_states(limit=10)

        assert [row.integration_id for row in rows] == [due.id]

    @pytest.mark.asyncio
    async def test_due_scan_honours_limit_oldest_first(self, store, session, integration_factory):
        integrations = [
            integration_factory(provider)
            for provider in (IntegrationProvider.LINEAR, IntegrationProvider.TODOIST, IntegrationProvider.GMAIL)
        ]
        now = utc_now()
        for offset, integration in enumerate(integrations):
            state = await store.ensure_sync_state(integration)
            state.next_sync_at = now - timedelta(minutes=10 - offset)
            session.add(state)
        session.commit()

        rows = await store.get_due_sync_states(limit=2)

        assert [row.integration_id for row in rows] == [integrations[0].id, integrations[1].id]

    @pytest.mark.asyncio
    async def test_stale_syncing_rows_are_failed(self, store, session, integration_factory):
        stale = integration_factory(IntegrationProvider.LINEAR)
        fresh = integration_factory(IntegrationProvider.TODOIST)
        for integration in (stale, fresh):
            await store.ensure_sync_state(integration)
            await store.start_sync_if_not_running(integration.id)
        stale_state = await store.get(stale.id)
        stale_state.last_sync_at = utc_now() - timedelta(hours=2)
        session.add(stale_state)
        session.commit()

        recovered = await store.recover_stale_syncs(stale_after_minutes=30)

        assert recovered == 1
        assert (await store.get(stale.id)).status == SyncStatus.FAILED
        assert (await store.get(fresh.id)).status == SyncStatus.SYNCING


class TestResolveSince:
    def _state(self, **kwargs) -> IntegrationSyncState:
        return IntegrationSyncState(provider="linear", **kwargs)

    def test_explicit_since_wins(self):
        since = utc_now() - timedelta(days=30)

        assert resolve_since(self._state(), DEFINITIONS[IntegrationProvider.LINEAR], SyncOptions(since=since)) == since

    def test_full_sync_has_no_bound(self):
        state = self._state(last_item_timestamp=utc_now())

        assert resolve_since(state, DEFINITIONS[IntegrationProvider.LINEAR], SyncOptions(full_sync=True)) is None

    def test_incremental_resumes_from_last_item(self):
        anchor = utc_now() - timedelta(hours=3)
        state = self._state(last_item_timestamp=anchor, last_successful_sync_at=utc_now())

        assert resolve_since(state, DEFINITIONS[IntegrationProvider.LINEAR], SyncOptions()) == anchor

    def test_incremental_falls_back_to_last_success(self):
        anchor = utc_now() - timedelta(hours=1)
        state = self._state(last_successful_sync_at=anchor)

        assert resolve_since(state, DEFINITIONS[IntegrationProvider.LINEAR], SyncOptions()) == anchor

    def test_first_run_uses_default_window(self):
        now = utc_now()

        since = resolve_since(self._state(), DEFINITIONS[IntegrationProvider.LINEAR], SyncOptions(), now=now)

        assert since == now - timedelta(days=DEFAULT_SYNC_WINDOW_DAYS)

    def test_non_incremental_provider_uses_window(self):
        now = utc_now()
        state = self._state(last_item_timestamp=now - timedelta(hours=1))

        since = resolve_since(state, DEFINITIONS[IntegrationProvider.SLACK], SyncOptions(), now=now)

        assert since == now - timedelta(days=DEFAULT_SYNC_WINDOW_DAYS)

    def test_interval_defaults_when_catalog_has_none(self):
        assert sync_interval_minutes(None) == DEFAULT_SYNC_INTERVAL_MINUTES
