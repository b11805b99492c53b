"""
Ingestion ledger and batch pipeline.

Every normalized item lands in the `ingested_item` ledger keyed by
(integration_id, source_id):

- first sight: row inserted as pending, handed to the processor
- same source_id, same content hash (or no stored hash): no-op
- same source_id, different hash: row updated and re-queued as pending
- unchanged row still pending (worker died before processing): handed to
  the processor again

Dry runs only classify items against the ledger and never write.

The insert uses INSERT ... ON CONFLICT DO NOTHING so concurrent webhook
deliveries and scheduled pulls for the same external object cannot create
duplicate rows. Hash comparison is last-write-wins.
"""
import json
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import select

from app.core.logging_config import log_error, log_sync_event, log_warning
from app.core.session_utils import SessionLike, _commit, _exec, _execute, _get, _refresh, _rollback, dialect_name
from app.core.time_utils import utc_now
from app.integrations.types import ProcessResult, StandardIngestItem, SyncError, SyncResult
from app.models.enums import IngestedItemStatus, IntegrationProvider, enum_value
from app.models.integration import IngestedItem, Integration

DEFAULT_BATCH_LIMIT = 100


def _insert_ignoring_conflicts(dialect: str):
    table = IngestedItem.__table__
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise ValueError(f"Unsupported database dialect for ingestion: {dialect}")


def _serialize(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _ids_to_json(ids: Optional[Iterable]) -> Optional[str]:
    if not ids:
        return None
    return json.dumps([str(value) for value in ids])


class IngestionLedger:
    """Reads and writes ingestion ledger rows for one session."""

    def __init__(self, session: SessionLike):
        self.session = session

    async def get_item(self, integration_id: uuid.UUID, source_id: str) -> Optional[IngestedItem]:
        statement = (
            select(IngestedItem)
            .where(IngestedItem.integration_id == integration_id)
            .where(IngestedItem.source_id == source_id)
            .execution_options(populate_existing=True)
        )
        return (await _exec(self.session, statement)).first()

    async def classify_item(self, integration: Integration, item: StandardIngestItem) -> Tuple[bool, bool]:
        """Read-only (is_new, updated) for an item, counted the way a real ingest would count it."""
        existing = await self.get_item(integration.id, item.source_id)
        if existing is None:
            return True, False
        if existing.source_hash and existing.source_hash != item.content_hash():
            return False, True
        if enum_value(existing.status) == IngestedItemStatus.PENDING.value:
            return existing.processed_at is None, existing.processed_at is not None
        return False, False

    async def create_ingested_item(
        self,
        integration: Integration,
        item: StandardIngestItem,
    ) -> Tuple[IngestedItem, bool, bool]:
        """
        Record an item in the ledger.

        Returns:
            (row, is_new, updated)
        """
        source_hash = item.content_hash()
        metadata_json = item.metadata.model_dump(mode="json")
        raw_json = item.model_dump(mode="json")

        row = IngestedItem(
            user_id=integration.user_id,
            integration_id=integration.id,
            provider=enum_value(item.source_provider),
            source_id=item.source_id,
            source_url=item.source_url,
            item_type=enum_value(item.type),
            title=item.title,
            content=item.content,
            summary=item.summary,
            source_hash=source_hash,
            raw_data=_serialize(raw_json),
            item_metadata=_serialize(metadata_json),
            status=IngestedItemStatus.PENDING.value,
        )
        values = {column.name: getattr(row, column.name) for column in IngestedItem.__table__.columns}

        statement = (
            _insert_ignoring_conflicts(dialect_name(self.session))
            .values(**values)
            .on_conflict_do_nothing(index_elements=["integration_id", "source_id"])
        )
        result = await _execute(self.session, statement)
        await _commit(self.session)

        existing = await self.get_item(integration.id, item.source_id)
        if existing is None:
            # Row vanished between insert and read (integration deleted mid-sync)
            raise LookupError(f"Ingested item {item.source_id} disappeared after insert")

        if result.rowcount == 1:
            return existing, True, False

        if not existing.source_hash or existing.source_hash == source_hash:
            return existing, False, False

        existing.source_url = item.source_url
        existing.item_type = enum_value(item.type)
        existing.title = item.title
        existing.content = item.content
        existing.summary = item.summary
        existing.source_hash = source_hash
        existing.raw_data = _serialize(raw_json)
        existing.item_metadata = _serialize(metadata_json)
        existing.status = IngestedItemStatus.PENDING.value
        existing.error = None
        existing.touch()
        self.session.add(existing)
        await _commit(self.session)
        return existing, False, True

    async def mark_ingested_item_processed(
        self,
        item_id: uuid.UUID,
        capture_id: Optional[uuid.UUID] = None,
        memory_ids: Optional[List[uuid.UUID]] = None,
        task_ids: Optional[List[uuid.UUID]] = None,
    ) -> Optional[IngestedItem]:
        row = await _get(self.session, IngestedItem, item_id)
        if row is None:
            return None
        row.status = IngestedItemStatus.PROCESSED.value
        row.error = None
        row.capture_id = capture_id
        row.memory_ids = _ids_to_json(memory_ids)
        row.task_ids = _ids_to_json(task_ids)
        row.processed_at = utc_now()
        row.touch()
        self.session.add(row)
        await _commit(self.session)
        return row

    async def update_ingested_item(
        self,
        item_id: uuid.UUID,
        status: IngestedItemStatus,
        error: Optional[str] = None,
    ) -> Optional[IngestedItem]:
        row = await _get(self.session, IngestedItem, item_id)
        if row is None:
            return None
        row.status = enum_value(status)
        row.error = error
        row.touch()
        self.session.add(row)
        await _commit(self.session)
        return row

    async def list_ingested_items(
        self,
        user_id: uuid.UUID,
        provider: Optional[IntegrationProvider] = None,
        status: Optional[IngestedItemStatus] = None,
        limit: int = 50,
    ) -> List[IngestedItem]:
        statement = select(IngestedItem).where(IngestedItem.user_id == user_id)
        if provider is not None:
            statement = statement.where(IngestedItem.provider == enum_value(provider))
        if status is not None:
            statement = statement.where(IngestedItem.status == enum_value(status))
        statement = statement.order_by(IngestedItem.created_at.desc()).limit(limit)
        return list((await _exec(self.session, statement)).all())

    async def get_integration_stats(self, user_id: uuid.UUID) -> Dict[str, Dict[str, int]]:
        """Ledger row counts per provider and status: {provider: {status: n, "total": n}}."""
        statement = (
            select(IngestedItem.provider, IngestedItem.status, func.count(IngestedItem.id))
            .where(IngestedItem.user_id == user_id)
            .group_by(IngestedItem.provider, IngestedItem.status)
        )
        stats: Dict[str, Dict[str, int]] = {}
        for provider, status, count in (await _exec(self.session, statement)).all():
            bucket = stats.setdefault(enum_value(provider), {"total": 0})
            bucket[enum_value(status)] = count
            bucket["total"] += count
        return stats


class IngestionPipeline:
    """
    Feeds provider output through the ledger and the downstream processor.

    Used for both pull syncs and webhook deliveries so the two paths
    deduplicate identically.
    """

    def __init__(self, session: SessionLike, processor=None):
        self.session = session
        self.ledger = IngestionLedger(session)
        if processor is None:
            from app.integrations.processor import IngestionProcessor
            processor = IngestionProcessor(session)
        self.processor = processor

    async def ingest_batch(
        self,
        integration: Integration,
        items: List[StandardIngestItem],
        limit: Optional[int] = None,
        dry_run: bool = False,
    ) -> SyncResult:
        provider = IntegrationProvider(enum_value(integration.provider))
        result = SyncResult(provider=provider, items_processed=len(items))

        for item in items:
            try:
                created, updated = await self._ingest_one(integration, item, dry_run)
            except Exception as exc:
                await _rollback(self.session)
                # Rollback expires loaded rows; reload before the next item
                await _refresh(self.session, integration)
                result.items_failed += 1
                result.errors.append(SyncError(item_id=item.source_id, message=str(exc), recoverable=True))
                log_warning(
                    "Ingestion failed for item",
                    provider=provider.value,
                    source_id=item.source_id,
                    error=str(exc),
                )
                continue

            if created:
                result.items_created += 1
            elif updated:
                result.items_updated += 1
            else:
                result.items_skipped += 1

        result.success = True
        result.has_more = len(items) == (limit or DEFAULT_BATCH_LIMIT)
        log_sync_event(
            provider.value,
            "batch ingested",
            integration_id=str(integration.id),
            processed=result.items_processed,
            created=result.items_created,
            updated=result.items_updated,
            skipped=result.items_skipped,
            failed=result.items_failed,
        )
        return result

    async def _ingest_one(self, integration: Integration, item: StandardIngestItem, dry_run: bool) -> Tuple[bool, bool]:
        if dry_run:
            return await self.ledger.classify_item(integration, item)

        row, is_new, updated = await self.ledger.create_ingested_item(integration, item)
        if not is_new and not updated:
            if enum_value(row.status) != IngestedItemStatus.PENDING.value:
                return False, False
            # Recorded earlier but never processed
            is_new = row.processed_at is None
            updated = not is_new

        row_id = row.id
        try:
            processed: ProcessResult = await self.processor.process(integration.user_id, item)
        except Exception as exc:
            await _rollback(self.session)
            try:
                await self.ledger.update_ingested_item(row_id, IngestedItemStatus.FAILED, error=str(exc))
            except Exception as mark_error:
                log_error(mark_error, source_id=item.source_id)
            raise

        await self.ledger.mark_ingested_item_processed(
            row_id,
            capture_id=processed.capture_id,
            memory_ids=processed.memory_ids,
            task_ids=processed.task_ids,
        )
        return is_new, updated
