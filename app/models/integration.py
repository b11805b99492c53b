"""
Database models for integrations, sync state, the ingestion ledger and
webhook subscriptions.

All tokens and webhook secrets are encrypted with Fernet before storage
(core/encryption.py) and decrypted right before a provider call.

Models:
- Integration: a user's connection to one provider
- IntegrationSyncState: scheduling, cursor and health of pulls (one per integration)
- IngestedItem: dedup ledger, one row per (integration, external source id)
- WebhookSubscription: inbound delivery registration and health

Conventions:
- Every row carries user_id with CASCADE delete
- Child rows reference integration.id with CASCADE delete
- JSON payloads are stored as TEXT so SQLite and PostgreSQL behave the same
"""
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, Index, Relationship

from app.core.time_utils import utc_now
from app.models.base import BaseModel
from app.models.enums import IngestedItemStatus, IngestItemType, IntegrationProvider, SyncStatus

if TYPE_CHECKING:
    from app.models.user import User


def _load_json(value: Optional[str], default):
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def _dump_json(value) -> Optional[str]:
    if value is None or value == {} or value == []:
        return None
    return json.dumps(value, default=str)


class Integration(BaseModel, table=True):
    """
    User's connection to an external provider.

    Fields:
        user_id: Owner of the connection
        provider: Provider id (github, slack, ...)
        access_token_encrypted: Encrypted OAuth access token or API key
        refresh_token_encrypted: Encrypted refresh token, when the provider issues one
        token_expires_at: Access token expiry, None for non-expiring tokens
        provider_metadata: JSON (workspace id, account email, selected repositories, ...)
        is_active: False once the user disables the connection
        connected_at: When the connection was first made

    Deleting an Integration cascades to its sync state, ledger rows and
    webhook subscriptions.
    """
    __tablename__ = "integration"

    user_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )
    )

    provider: IntegrationProvider = Field(
        sa_column=Column(String(50), nullable=False, index=True),
        description="Integration provider id"
    )

    access_token_encrypted: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Encrypted API key or OAuth access token"
    )

    refresh_token_encrypted: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Encrypted OAuth refresh token"
    )

    token_expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
        description="Access token expiration time"
    )

    provider_metadata: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="JSON metadata specific to the provider"
    )

    is_active: bool = Field(default=True)

    connected_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    # Relationships
    user: "User" = Relationship(back_populates="integrations")

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_integration_user_provider"),
        Index("idx_integration_active_provider", "is_active", "provider"),
    )

    def get_metadata(self) -> Dict[str, Any]:
        """Get provider metadata as dict."""
        return _load_json(self.provider_metadata, {})

    def set_metadata(self, metadata: Optional[Dict[str, Any]]) -> None:
        """Replace provider metadata."""
        self.provider_metadata = _dump_json(metadata)

    def update_metadata(self, **kwargs) -> None:
        """Update specific keys in provider metadata."""
        current = self.get_metadata()
        current.update(kwargs)
        self.set_metadata(current)


class IntegrationSyncState(BaseModel, table=True):
    """
    Scheduling and cursor state for one integration.

    Status moves pending -> syncing -> completed | failed, and failed ->
    paused after repeated errors. The pending/completed/failed -> syncing
    step is a conditional UPDATE so only one run holds the row.
    """
    __tablename__ = "integration_sync_state"

    user_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    integration_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("integration.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        )
    )
    provider: IntegrationProvider = Field(sa_column=Column(String(50), nullable=False))

    status: SyncStatus = Field(
        default=SyncStatus.PENDING,
        sa_column=Column(String(20), nullable=False, default=SyncStatus.PENDING.value),
    )

    last_sync_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    next_sync_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_successful_sync_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    # Incremental resumption
    cursor: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    last_item_id: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    last_item_timestamp: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    # Health
    error_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    last_error_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    # Counters
    total_items_synced: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    items_synced_this_run: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))

    __table_args__ = (
        Index("idx_sync_state_due", "status", "next_sync_at"),
    )


class IngestedItem(BaseModel, table=True):
    """
    Ledger entry for one external object.

    Exactly one row exists per (integration_id, source_id). source_hash is
    the SHA-256 of the item content; a different hash on re-ingestion
    updates the row and re-queues it as pending.
    """
    __tablename__ = "ingested_item"

    user_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    integration_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("integration.id", ondelete="CASCADE"), nullable=False)
    )
    provider: IntegrationProvider = Field(sa_column=Column(String(50), nullable=False))

    source_id: str = Field(sa_column=Column(String(512), nullable=False))
    source_url: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    item_type: IngestItemType = Field(sa_column=Column(String(20), nullable=False))

    title: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    content: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    summary: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    source_hash: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))

    raw_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    item_metadata: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    status: IngestedItemStatus = Field(
        default=IngestedItemStatus.PENDING,
        sa_column=Column(String(20), nullable=False, default=IngestedItemStatus.PENDING.value),
    )
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    # Links to downstream entities
    capture_id: Optional[uuid.UUID] = Field(default=None)
    memory_ids: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    task_ids: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    __table_args__ = (
        UniqueConstraint("integration_id", "source_id", name="uq_ingested_item_integration_source"),
        Index("idx_ingested_item_user_status", "user_id", "status"),
    )

    def get_item_metadata(self) -> Dict[str, Any]:
        return _load_json(self.item_metadata, {})

    def get_memory_ids(self) -> List[str]:
        return _load_json(self.memory_ids, [])

    def get_task_ids(self) -> List[str]:
        return _load_json(self.task_ids, [])


class WebhookSubscription(BaseModel, table=True):
    """
    Inbound webhook registration for one integration.

    error_count tracks consecutive handler failures; the subscription is
    deactivated once it reaches the configured threshold and stays
    inactive until the user reactivates it.
    """
    __tablename__ = "webhook_subscription"

    user_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    integration_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("integration.id", ondelete="CASCADE"), nullable=False)
    )
    provider: IntegrationProvider = Field(sa_column=Column(String(50), nullable=False))

    external_webhook_id: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    delivery_url: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    secret_encrypted: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    events: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    is_active: bool = Field(default=True)
    error_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_received_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    __table_args__ = (
        UniqueConstraint("integration_id", "provider", name="uq_webhook_subscription_integration_provider"),
    )

    def get_events(self) -> List[str]:
        return _load_json(self.events, [])

    def set_events(self, events: Optional[List[str]]) -> None:
        self.events = _dump_json(list(events or []))
