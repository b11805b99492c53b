"""create integration tables

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c2e3f4b5d6"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _user_fk():
    return sa.Column("user_id", sa.Uuid(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False)


def _integration_fk(**kwargs):
    return sa.Column(
        "integration_id", sa.Uuid(), sa.ForeignKey("integration.id", ondelete="CASCADE"), nullable=False, **kwargs
    )


def upgrade() -> None:
    op.create_table(
        "user",
        *_base_columns(),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_user_id", "user", ["id"])

    op.create_table(
        "integration",
        *_base_columns(),
        _user_fk(),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("access_token_encrypted", sa.Text(), nullable=False),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_metadata", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "provider", name="uq_integration_user_provider"),
    )
    op.create_index("ix_integration_id", "integration", ["id"])
    op.create_index("ix_integration_user_id", "integration", ["user_id"])
    op.create_index("ix_integration_provider", "integration", ["provider"])
    op.create_index("idx_integration_active_provider", "integration", ["is_active", "provider"])

    op.create_table(
        "integration_sync_state",
        *_base_columns(),
        _user_fk(),
        _integration_fk(unique=True),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cursor", sa.Text(), nullable=True),
        sa.Column("last_item_id", sa.String(length=255), nullable=True),
        sa.Column("last_item_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_items_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_synced_this_run", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_integration_sync_state_id", "integration_sync_state", ["id"])
    op.create_index("ix_integration_sync_state_user_id", "integration_sync_state", ["user_id"])
    op.create_index("idx_sync_state_due", "integration_sync_state", ["status", "next_sync_at"])

    op.create_table(
        "ingested_item",
        *_base_columns(),
        _user_fk(),
        _integration_fk(),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("source_id", sa.String(length=512), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("item_type", sa.String(length=20), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("source_hash", sa.String(length=64), nullable=True),
        sa.Column("raw_data", sa.Text(), nullable=True),
        sa.Column("item_metadata", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("capture_id", sa.Uuid(), nullable=True),
        sa.Column("memory_ids", sa.Text(), nullable=True),
        sa.Column("task_ids", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("integration_id", "source_id", name="uq_ingested_item_integration_source"),
    )
    op.create_index("ix_ingested_item_id", "ingested_item", ["id"])
    op.create_index("ix_ingested_item_user_id", "ingested_item", ["user_id"])
    op.create_index("idx_ingested_item_user_status", "ingested_item", ["user_id", "status"])

    op.create_table(
        "webhook_subscription",
        *_base_columns(),
        _user_fk(),
        _integration_fk(),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("external_webhook_id", sa.String(length=255), nullable=True),
        sa.Column("delivery_url", sa.Text(), nullable=True),
        sa.Column("secret_encrypted", sa.Text(), nullable=True),
        sa.Column("events", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.UniqueConstraint("integration_id", "provider", name="uq_webhook_subscription_integration_provider"),
    )
    op.create_index("ix_webhook_subscription_id", "webhook_subscription", ["id"])
    op.create_index("ix_webhook_subscription_user_id", "webhook_subscription", ["user_id"])

    op.create_table(
        "capture",
        *_base_columns(),
        _user_fk(),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("project_id", sa.Uuid(), nullable=True),
    )
    op.create_index("ix_capture_id", "capture", ["id"])
    op.create_index("ix_capture_user_id", "capture", ["user_id"])

    op.create_table(
        "memory",
        *_base_columns(),
        _user_fk(),
        sa.Column("key", sa.String(length=512), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("source", sa.String(length=512), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=False, server_default="70"),
        sa.UniqueConstraint("user_id", "key", name="uq_memory_user_key"),
    )
    op.create_index("ix_memory_id", "memory", ["id"])
    op.create_index("idx_memory_user_category", "memory", ["user_id", "category"])

    op.create_table(
        "project_task",
        *_base_columns(),
        _user_fk(),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="backlog"),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("ai_suggested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_rationale", sa.Text(), nullable=True),
    )
    op.create_index("ix_project_task_id", "project_task", ["id"])
    op.create_index("ix_project_task_user_id", "project_task", ["user_id"])


def downgrade() -> None:
    for table in (
        "project_task",
        "memory",
        "capture",
        "webhook_subscription",
        "ingested_item",
        "integration_sync_state",
        "integration",
        "user",
    ):
        op.drop_table(table)
