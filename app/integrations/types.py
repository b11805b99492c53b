"""
Domain types shared by providers, the registry and the ingestion pipeline.

These are transient pydantic models; nothing here is persisted as-is.
StandardIngestItem is folded into an IngestedItem ledger row plus the
downstream captures, memories and tasks.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.signing import sha256_hex
from app.core.time_utils import utc_now
from app.models.enums import (
    AuthMethod,
    IngestItemType,
    IntegrationCategory,
    IntegrationProvider,
    Priority,
    SyncMethod,
)


# ================================================================================
# CATALOG
# ================================================================================

class IntegrationFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    realtime: bool = False
    bidirectional: bool = False
    incremental_sync: bool = False
    webhooks: bool = False


class IntegrationDefinition(BaseModel):
    """Static catalog entry for one provider. Immutable."""
    model_config = ConfigDict(frozen=True)

    id: IntegrationProvider
    name: str
    description: str
    icon: str
    category: IntegrationCategory
    auth_method: AuthMethod
    sync_method: SyncMethod
    supported_types: tuple[IngestItemType, ...]
    default_sync_interval: int = 0
    features: IntegrationFeatures = IntegrationFeatures()
    is_available: bool = True
    is_coming_soon: bool = False
    scopes: tuple[str, ...] = ()


# ================================================================================
# TOKENS / CONTEXT
# ================================================================================

class IntegrationTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None


class IntegrationContext(BaseModel):
    """What a provider receives for one sync call: decrypted tokens plus connection metadata."""
    user_id: uuid.UUID
    integration_id: uuid.UUID
    tokens: IntegrationTokens
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SyncOptions(BaseModel):
    """
    Options for one pull.

    Providers may write a new `cursor` back onto the options object; the
    sync service persists it when the run completes.
    """
    since: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    types: Optional[List[IngestItemType]] = None
    full_sync: bool = False
    cursor: Optional[str] = None


class WebhookRegistration(BaseModel):
    """Result of registering a webhook with a provider."""
    webhook_id: str
    secret: Optional[str] = None
    events: List[str] = Field(default_factory=list)


# ================================================================================
# NORMALIZED ITEMS
# ================================================================================

class IngestItemMetadata(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    author: Optional[str] = None
    author_email: Optional[str] = None
    author_id: Optional[str] = None
    participants: List[str] = Field(default_factory=list)

    tags: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)

    parent_id: Optional[str] = None
    thread_id: Optional[str] = None

    custom: Dict[str, Any] = Field(default_factory=dict)


class ProcessingHints(BaseModel):
    extract_tasks: bool = False
    extract_memories: bool = True
    priority: Optional[Priority] = None
    category: Optional[str] = None
    link_to_project: Optional[str] = None


class StandardIngestItem(BaseModel):
    """The provider-agnostic shape every provider produces."""
    source_provider: IntegrationProvider
    source_id: str
    source_url: Optional[str] = None

    type: IngestItemType

    title: Optional[str] = None
    content: str = ""
    summary: Optional[str] = None

    metadata: IngestItemMetadata = Field(default_factory=IngestItemMetadata)
    processing_hints: ProcessingHints = Field(default_factory=ProcessingHints)

    def content_hash(self) -> str:
        """SHA-256 of the item body, used for change detection."""
        return sha256_hex(self.content)


# ================================================================================
# RESULTS
# ================================================================================

class SyncError(BaseModel):
    item_id: Optional[str] = None
    message: str
    code: Optional[str] = None
    recoverable: bool = True


class SyncResult(BaseModel):
    success: bool = False
    provider: IntegrationProvider
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    errors: List[SyncError] = Field(default_factory=list)
    has_more: bool = False
    cursor: Optional[str] = None
    next_sync_at: Optional[datetime] = None

    @property
    def in_progress_elsewhere(self) -> bool:
        """True when the run was skipped because another run holds the sync state."""
        return any(error.code == SYNC_IN_PROGRESS_CODE for error in self.errors)


class ProcessResult(BaseModel):
    """Downstream entities created for one ingested item."""
    capture_id: Optional[uuid.UUID] = None
    memory_ids: List[uuid.UUID] = Field(default_factory=list)
    task_ids: List[uuid.UUID] = Field(default_factory=list)


SYNC_IN_PROGRESS_CODE = "sync_in_progress"


# ================================================================================
# BROWSER EXTENSION
# ================================================================================

class WebClipMetadata(BaseModel):
    author: Optional[str] = None
    published_date: Optional[str] = Field(default=None, alias="publishedDate")
    site_name: Optional[str] = Field(default=None, alias="siteName")
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    model_config = ConfigDict(populate_by_name=True)


class WebClip(BaseModel):
    """A page, selection, image or link captured by the browser extension."""
    url: str
    title: str
    content: str = ""
    selected_text: Optional[str] = Field(default=None, alias="selectedText")
    note: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    source: Literal["chrome", "firefox", "safari", "edge", "other"] = "other"
    type: Literal["page", "selection", "image", "link"] = "page"
    metadata: WebClipMetadata = Field(default_factory=WebClipMetadata)

    model_config = ConfigDict(populate_by_name=True)
