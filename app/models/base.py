"""
Base model classes shared by all tables.
"""
import uuid
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from app.core.time_utils import utc_now


class TimestampMixin(SQLModel):
    """Adds created_at / updated_at columns stored as UTC."""
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )


class BaseModel(TimestampMixin):
    """
    Base class for all persistent models: UUID primary key plus timestamps.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    def touch(self) -> None:
        """Stamp updated_at with the current time."""
        self.updated_at = utc_now()
