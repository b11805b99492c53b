"""
Per-integration sync state.

Status transitions:
    pending   -> syncing               (start_sync_if_not_running)
    completed -> syncing
    failed    -> syncing
    syncing   -> completed             (complete_sync)
    syncing   -> failed | paused       (fail_sync; paused after 5 consecutive errors)
    paused    -> pending               (reset_sync_state, user action)

The only mutual exclusion between the cron, manual syncs and the OAuth
callback is the conditional UPDATE in start_sync_if_not_running.
"""
import uuid
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import or_, update
from sqlmodel import select

from app.core.config import (
    DEFAULT_SYNC_INTERVAL_MINUTES,
    DEFAULT_SYNC_WINDOW_DAYS,
    SYNC_FAILURE_PAUSE_THRESHOLD,
    settings,
)
from app.core.logging_config import log_sync_event, log_warning
from app.core.session_utils import SessionLike, _commit, _exec, _execute, _refresh
from app.core.time_utils import ensure_utc, minutes_from_now, utc_now
from app.integrations.types import IntegrationDefinition, SyncOptions
from app.models.enums import STARTABLE_SYNC_STATUSES, SyncStatus, enum_value
from app.models.integration import Integration, IntegrationSyncState

_STARTABLE = [status.value for status in STARTABLE_SYNC_STATUSES]


def sync_interval_minutes(definition: Optional[IntegrationDefinition]) -> int:
    """Minutes between scheduled pulls; 0 in the catalog means the default."""
    if definition is None or not definition.default_sync_interval:
        return DEFAULT_SYNC_INTERVAL_MINUTES
    return definition.default_sync_interval


def resolve_since(
    state: Optional[IntegrationSyncState],
    definition: Optional[IntegrationDefinition],
    options: SyncOptions,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Lower bound for a pull.

    An explicit `since` wins. Full syncs have no bound. Incremental
    providers resume from the last item seen (or the last successful run);
    everything else gets a fixed window.
    """
    if options.since is not None:
        return ensure_utc(options.since)
    if options.full_sync:
        return None

    now = now or utc_now()
    incremental = definition is not None and definition.features.incremental_sync
    if incremental and state is not None:
        anchor = state.last_item_timestamp or state.last_successful_sync_at
        if anchor is not None:
            return ensure_utc(anchor)
    return now - timedelta(days=DEFAULT_SYNC_WINDOW_DAYS)


class SyncStateStore:
    """Reads and transitions IntegrationSyncState rows for one session."""

    def __init__(self, session: SessionLike):
        self.session = session

    async def get(self, integration_id: uuid.UUID) -> Optional[IntegrationSyncState]:
        statement = (
            select(IntegrationSyncState)
            .where(IntegrationSyncState.integration_id == integration_id)
            .execution_options(populate_existing=True)
        )
        return (await _exec(self.session, statement)).first()

    async def ensure_sync_state(self, integration: Integration, reset: bool = False) -> IntegrationSyncState:
        """
        Make sure the integration has a state row.

        A missing row is created as pending and due now. With `reset` (a new
        connection), an existing row is upserted back to pending with a clean
        error count unless a run currently holds it.
        """
        now = utc_now()
        state = await self.get(integration.id)
        if state is None:
            state = IntegrationSyncState(
                user_id=integration.user_id,
                integration_id=integration.id,
                provider=integration.provider,
                status=SyncStatus.PENDING,
                next_sync_at=now,
            )
            self.session.add(state)
        elif reset and state.status != SyncStatus.SYNCING:
            state.status = SyncStatus.PENDING
            state.next_sync_at = now
            state.error_count = 0
            state.last_error = None
            state.touch()
            self.session.add(state)
        else:
            return state

        await _commit(self.session)
        await _refresh(self.session, state)
        return state

    async def start_sync_if_not_running(self, integration_id: uuid.UUID) -> bool:
        """
        Claim the row for a run.

        Single conditional UPDATE; True only for the caller whose statement
        changed exactly one row.
        """
        now = utc_now()
        statement = (
            update(IntegrationSyncState)
            .where(IntegrationSyncState.integration_id == integration_id)
            .where(IntegrationSyncState.status.in_(_STARTABLE))
            .values(status=SyncStatus.SYNCING.value, last_sync_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await _execute(self.session, statement)
        await _commit(self.session)
        return result.rowcount == 1

    async def complete_sync(
        self,
        integration_id: uuid.UUID,
        items_created: int,
        items_updated: int,
        definition: Optional[IntegrationDefinition] = None,
        cursor: Optional[str] = None,
        last_item_id: Optional[str] = None,
        last_item_timestamp: Optional[datetime] = None,
    ) -> Optional[IntegrationSyncState]:
        state = await self.get(integration_id)
        if state is None:
            log_warning("complete_sync on missing sync state", integration_id=str(integration_id))
            return None

        now = utc_now()
        synced = items_created + items_updated
        state.status = SyncStatus.COMPLETED
        state.error_count = 0
        state.last_error = None
        state.last_sync_at = now
        state.last_successful_sync_at = now
        state.total_items_synced = (state.total_items_synced or 0) + synced
        state.items_synced_this_run = synced
        if cursor is not None:
            state.cursor = cursor
        if last_item_id is not None:
            state.last_item_id = last_item_id
        if last_item_timestamp is not None:
            state.last_item_timestamp = last_item_timestamp
        state.next_sync_at = minutes_from_now(sync_interval_minutes(definition), now=now)
        state.touch()

        self.session.add(state)
        await _commit(self.session)
        log_sync_event(
            enum_value(state.provider),
            "completed",
            integration_id=str(integration_id),
            items_synced=synced,
            next_sync_at=state.next_sync_at.isoformat(),
        )
        return state

    async def fail_sync(self, integration_id: uuid.UUID, error: str) -> Optional[IntegrationSyncState]:
        """
        Record a failed run.

        next_sync_at is left untouched so the row is due again on the next
        scan; after SYNC_FAILURE_PAUSE_THRESHOLD consecutive errors the row is
        paused and drops out of the scan.
        """
        state = await self.get(integration_id)
        if state is None:
            log_warning("fail_sync on missing sync state", integration_id=str(integration_id))
            return None

        now = utc_now()
        state.error_count = (state.error_count or 0) + 1
        state.last_error = error
        state.last_error_at = now
        state.last_sync_at = now
        paused = state.error_count >= SYNC_FAILURE_PAUSE_THRESHOLD
        state.status = SyncStatus.PAUSED if paused else SyncStatus.FAILED
        state.touch()

        self.session.add(state)
        await _commit(self.session)
        log_sync_event(
            enum_value(state.provider),
            "paused" if paused else "failed",
            integration_id=str(integration_id),
            error_count=state.error_count,
            error=error,
        )
        return state

    async def release_sync(self, integration_id: uuid.UUID) -> Optional[IntegrationSyncState]:
        """Give the row back without recording a run (dry runs). Cursor and counters stay as they were."""
        state = await self.get(integration_id)
        if state is None or state.status != SyncStatus.SYNCING:
            return state
        state.status = SyncStatus.COMPLETED if state.last_successful_sync_at else SyncStatus.PENDING
        state.touch()
        self.session.add(state)
        await _commit(self.session)
        return state

    async def reset_sync_state(self, integration_id: uuid.UUID) -> Optional[IntegrationSyncState]:
        """Resume a paused or failed integration: back to pending, due now."""
        state = await self.get(integration_id)
        if state is None:
            return None
        if state.status == SyncStatus.SYNCING:
            return state

        state.status = SyncStatus.PENDING
        state.error_count = 0
        state.last_error = None
        state.next_sync_at = utc_now()
        state.touch()
        self.session.add(state)
        await _commit(self.session)
        log_sync_event(enum_value(state.provider), "reset", integration_id=str(integration_id))
        return state

    async def get_due_sync_states(
        self,
        limit: int = 20,
        now: Optional[datetime] = None,
        exclude_providers: Optional[Iterable[str]] = None,
    ) -> List[IntegrationSyncState]:
        """Startable rows whose next_sync_at has passed, oldest first."""
        now = now or utc_now()
        statement = (
            select(IntegrationSyncState)
            .where(IntegrationSyncState.status.in_(_STARTABLE))
            .where(
                or_(
                    IntegrationSyncState.next_sync_at.is_(None),
                    IntegrationSyncState.next_sync_at <= now,
                )
            )
        )
        if exclude_providers:
            statement = statement.where(IntegrationSyncState.provider.notin_(list(exclude_providers)))
        statement = statement.order_by(IntegrationSyncState.next_sync_at.asc()).limit(limit)
        return list((await _exec(self.session, statement)).all())

    async def recover_stale_syncs(self, stale_after_minutes: Optional[int] = None) -> int:
        """
        Fail rows stuck in `syncing` (worker crashed mid-run).

        Returns the number of rows recovered.
        """
        minutes = stale_after_minutes or settings.sync_stale_after_minutes
        cutoff = utc_now() - timedelta(minutes=minutes)
        statement = (
            select(IntegrationSyncState)
            .where(IntegrationSyncState.status == SyncStatus.SYNCING.value)
            .where(
                or_(
                    IntegrationSyncState.last_sync_at.is_(None),
                    IntegrationSyncState.last_sync_at < cutoff,
                )
            )
        )
        stale = list((await _exec(self.session, statement)).all())
        for state in stale:
            await self.fail_sync(state.integration_id, f"Sync did not finish within {minutes} minutes")
        return len(stale)
