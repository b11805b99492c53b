"""
Pytest fixtures shared by the unit suites.

Environment variables are set before any app module is imported so the
settings singleton and the module-level engine pick up the test values.
"""
from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SKIP_DB_INIT", "true")

import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import app.models  # noqa: F401  (register tables on the metadata)
from app.core.time_utils import utc_now
from app.integrations.base import BaseIntegration
from app.integrations.credentials import store_tokens
from app.integrations.registry import IntegrationRegistry
from app.integrations.types import (
    IngestItemMetadata,
    IntegrationContext,
    IntegrationTokens,
    ProcessResult,
    StandardIngestItem,
    SyncOptions,
)
from app.models.enums import IngestItemType, IntegrationProvider
from app.models.integration import Integration
from app.models.user import User


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    SQLModel.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def user(session) -> User:
    account = User(email=f"founder-{uuid.uuid4().hex[:8]}@example.com", name="Test Founder")
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def make_item(
    source_id: str,
    content: str = "body",
    provider: IntegrationProvider = IntegrationProvider.LINEAR,
    item_type: IngestItemType = IngestItemType.NOTE,
    **kwargs,
) -> StandardIngestItem:
    return StandardIngestItem(
        source_provider=provider,
        source_id=source_id,
        type=item_type,
        title=kwargs.pop("title", f"Item {source_id}"),
        content=content,
        metadata=kwargs.pop("metadata", IngestItemMetadata(timestamp=utc_now())),
        **kwargs,
    )


class FakePullIntegration(BaseIntegration):
    """
    In-memory provider used by the service and router tests.

    `items` is returned from every sync; `error` is raised instead when set.
    Every call records the options it received.
    """

    provider = IntegrationProvider.LINEAR

    def __init__(self, items: Optional[List[StandardIngestItem]] = None, **kwargs):
        super().__init__(**kwargs)
        self.items: List[StandardIngestItem] = list(items or [])
        self.error: Optional[Exception] = None
        self.calls: List[SyncOptions] = []
        self.refreshed_with: List[str] = []
        self.refresh_error: Optional[Exception] = None
        self.account_info: Dict[str, Any] = {"account_name": "Fake Account", "account_email": "fake@example.com"}

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        return dict(self.account_info)

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        self.calls.append(options.model_copy())
        if self.error is not None:
            raise self.error
        return list(self.items)

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        return IntegrationTokens(access_token=f"access-{code}", refresh_token="refresh-token")

    async def refresh_access_token(self, refresh_token: str) -> IntegrationTokens:
        self.refreshed_with.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return IntegrationTokens(
            access_token="refreshed-access",
            refresh_token="rotated-refresh",
            expires_at=utc_now() + timedelta(hours=1),
        )


class RecordingProcessor:
    """ItemProcessor double that records processed source ids and can fail on demand."""

    def __init__(self, fail_on: Optional[set] = None):
        self.fail_on = set(fail_on or ())
        self.processed: List[str] = []

    async def process(self, user_id: uuid.UUID, item: StandardIngestItem) -> ProcessResult:
        if item.source_id in self.fail_on:
            raise RuntimeError(f"processing failed for {item.source_id}")
        self.processed.append(item.source_id)
        return ProcessResult(capture_id=uuid.uuid4())


@pytest.fixture
def fake_provider() -> FakePullIntegration:
    return FakePullIntegration()


@pytest.fixture
def registry(fake_provider) -> IntegrationRegistry:
    test_registry = IntegrationRegistry()
    test_registry.register(fake_provider)
    return test_registry


@pytest.fixture
def processor() -> RecordingProcessor:
    return RecordingProcessor()


@pytest.fixture
def integration_factory(session, user) -> Callable[..., Integration]:
    """Create a connected integration row for the test user."""

    def _create(
        provider: IntegrationProvider = IntegrationProvider.LINEAR,
        access_token: str = "access-token",
        refresh_token: Optional[str] = None,
        expires_at=None,
        metadata: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
        owner: Optional[User] = None,
    ) -> Integration:
        integration = Integration(
            user_id=(owner or user).id,
            provider=provider.value,
            access_token_encrypted="",
            is_active=is_active,
        )
        store_tokens(
            integration,
            IntegrationTokens(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at),
        )
        integration.set_metadata(metadata)
        session.add(integration)
        session.commit()
        session.refresh(integration)
        return integration

    return _create


@pytest.fixture
def item_factory() -> Callable[..., StandardIngestItem]:
    return make_item


@pytest.fixture
def processor_factory() -> Callable[..., RecordingProcessor]:
    return RecordingProcessor
