"""
User-related models.
"""
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from pydantic import EmailStr, field_validator
from sqlalchemy import Column
from sqlmodel import Field, Relationship, String

from .base import BaseModel

if TYPE_CHECKING:
    from app.models.integration import Integration


class User(BaseModel, table=True):
    """
    Account that owns integrations and the captures produced from them.
    """
    __tablename__ = "user"

    email: EmailStr = Field(
        sa_column=Column(String(255), unique=True, nullable=False)
    )
    name: str = Field(..., max_length=100, sa_column=Column(String(100), nullable=False))
    is_active: bool = Field(default=True)
    last_login_at: Optional[datetime] = None

    # Relations
    integrations: List["Integration"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True}
    )

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip()
