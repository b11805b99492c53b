"""
Pydantic schemas for integration API requests and responses.

Request Schemas:
- IntegrationApiKeyConnectRequest: Connect an API-key provider
- IntegrationSyncRequest: Options for a manual sync
- IntegrationMetadataUpdateRequest: Patch provider metadata (e.g. GitHub repositories)
- WebhookRegisterRequest: Register provider-side webhooks
- BrowserClipRequest: One or more clips pushed by the browser extension

Response Schemas:
- IntegrationDefinitionResponse / IntegrationCatalogResponse: catalog
- IntegrationStatusResponse: Current status of a user's integration
- AuthorizationUrlResponse, IntegrationConnectResponse: connect flow
- SyncResultResponse: Outcome of a sync run

Design Principles:
- Never expose encrypted tokens in responses
- Timestamps are UTC and serialized as ISO 8601
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.integrations.types import IntegrationDefinition, SyncOptions, SyncResult, WebClip
from app.models.enums import IngestItemType, IntegrationCategory, IntegrationProvider, SyncStatus


# ================================================================================
# REQUEST SCHEMAS
# ================================================================================

class IntegrationApiKeyConnectRequest(BaseModel):
    """API key for providers that authenticate with one (Granola)."""
    api_key: str = Field(..., min_length=1, description="Provider API key")

    @field_validator("api_key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API key cannot be empty")
        return v


class IntegrationSyncRequest(BaseModel):
    """
    Options for a manual sync.

    Fields:
        since: Only fetch items changed after this instant
        limit: Maximum number of items to pull
        types: Keep only these item types
        full_sync: Ignore the stored cursor
        background: Queue the sync on a worker instead of running inline
    """
    since: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    types: Optional[List[IngestItemType]] = None
    full_sync: bool = False
    background: bool = False

    def to_options(self) -> SyncOptions:
        return SyncOptions(since=self.since, limit=self.limit, types=self.types, full_sync=self.full_sync)


class IntegrationMetadataUpdateRequest(BaseModel):
    """Keys merged into the integration's provider metadata."""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_active: Optional[bool] = None


class WebhookRegisterRequest(BaseModel):
    delivery_url: Optional[str] = Field(default=None, description="Override the public delivery URL")


class BrowserClipRequest(BaseModel):
    """A single clip or a batch of clips."""
    clip: Optional[WebClip] = None
    clips: List[WebClip] = Field(default_factory=list)

    def all_clips(self) -> List[WebClip]:
        return ([self.clip] if self.clip else []) + list(self.clips)


# ================================================================================
# RESPONSE SCHEMAS
# ================================================================================

class IntegrationDefinitionResponse(IntegrationDefinition):
    """Catalog entry plus whether this instance has credentials for it."""
    configured: bool = False


class IntegrationCategoryGroup(BaseModel):
    category: IntegrationCategory
    label: str
    integrations: List[IntegrationDefinitionResponse]


class IntegrationCatalogResponse(BaseModel):
    categories: List[IntegrationCategoryGroup]


class SyncStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: SyncStatus
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    last_successful_sync_at: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None
    total_items_synced: int = 0
    items_synced_this_run: int = 0


class IntegrationStatusResponse(BaseModel):
    """
    Status of one of the user's integrations.

    Fields:
        provider: Provider id
        connected: Whether a connection exists
        is_active: False once disabled by the user
        account_name / account_email / workspace: From provider account info
        metadata: Remaining provider metadata
        sync: Sync state, when one exists
        webhook: Webhook subscription health, when one exists
    """
    provider: IntegrationProvider
    connected: bool
    is_active: bool = False
    connected_at: Optional[datetime] = None
    account_name: Optional[str] = None
    account_email: Optional[str] = None
    workspace: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sync: Optional[SyncStateResponse] = None
    webhook: Optional[Dict[str, Any]] = None


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str
    state: str


class IntegrationConnectResponse(BaseModel):
    provider: IntegrationProvider
    connected: bool = True
    account_name: Optional[str] = None
    account_email: Optional[str] = None
    sync_task_id: Optional[str] = None


class BrowserExtensionKeyResponse(BaseModel):
    api_key: str
    message: str = "Store this key in the browser extension; it will not be shown again."


class SyncResultResponse(SyncResult):
    """SyncResult as returned by the API."""


class BackgroundSyncResponse(BaseModel):
    provider: IntegrationProvider
    task_id: str
    status: str = "queued"


class CronSyncResponse(BaseModel):
    recovered: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
