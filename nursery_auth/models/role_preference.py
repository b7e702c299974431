"""
Saved login-role preference for phones registered as both guardian and staff.
"""

from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from nursery_auth.core.database import utcnow


class RolePreferences(SQLModel, table=True):
    """At most one row per phone; written with upsert semantics."""

    __tablename__ = "role_preferences"

    __table_args__ = (Index("idx_role_preferences_phone", "phone", unique=True),)

    id: int | None = Field(default=None, primary_key=True)
    phone: str = Field(max_length=20)
    preferred_role: str = Field(max_length=20)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
