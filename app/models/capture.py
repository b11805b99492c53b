"""
Downstream records created from ingested items.
"""
import uuid
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, Index

from app.models.base import BaseModel
from app.models.enums import CaptureType, TaskPriority, TaskStatus


class Capture(BaseModel, table=True):
    """A note, task or resource captured into the user's inbox."""
    __tablename__ = "capture"

    user_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    type: CaptureType = Field(sa_column=Column(String(20), nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    source: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    project_id: Optional[uuid.UUID] = Field(default=None)


class Memory(BaseModel, table=True):
    """
    Extracted fact used as coaching context.

    Keyed per user so re-ingesting the same item refreshes the memory
    instead of duplicating it.
    """
    __tablename__ = "memory"

    user_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    )
    key: str = Field(sa_column=Column(String(512), nullable=False))
    value: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(sa_column=Column(String(50), nullable=False))
    source: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    confidence: int = Field(default=70, sa_column=Column(Integer, nullable=False, default=70))

    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_memory_user_key"),
        Index("idx_memory_user_category", "user_id", "category"),
    )


class ProjectTask(BaseModel, table=True):
    """Task suggested from an imported issue, task or actionable note."""
    __tablename__ = "project_task"

    user_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    project_id: Optional[uuid.UUID] = Field(default=None)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    status: TaskStatus = Field(
        default=TaskStatus.BACKLOG,
        sa_column=Column(String(20), nullable=False, default=TaskStatus.BACKLOG.value),
    )
    priority: TaskPriority = Field(
        default=TaskPriority.MEDIUM,
        sa_column=Column(String(20), nullable=False, default=TaskPriority.MEDIUM.value),
    )
    ai_suggested: bool = Field(default=False)
    ai_rationale: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
