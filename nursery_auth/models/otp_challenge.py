"""
SQLModel-based OtpChallenge model for SMS phone verification.

Challenges are append-only: a row is written for every code sent and is
never deleted, so send/verify rate limits are derived by scanning recent rows
for a phone. The (phone, created_at) index keeps those scans cheap.

Security features:
- Stores a keyed hash of the code (never the code itself)
- attempt_count only increments; is_used only goes false -> true
- role_selected_at marks the challenge as consumed by a dual-role selection
"""

from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from nursery_auth.core.database import utcnow


class OtpChallenges(SQLModel, table=True):
    """Database table for one-time passcode challenges."""

    __tablename__ = "otp_challenges"

    __table_args__ = (Index("idx_otp_challenges_phone_created_at", "phone", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    phone: str = Field(max_length=20)

    # HMAC-SHA256 of the code
    code_hash: str = Field(max_length=64)

    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    # Verification state
    attempt_count: int = Field(default=0)
    is_used: bool = Field(default=False)
    used_at: datetime | None = Field(default=None)
    role_selected_at: datetime | None = Field(default=None)

    # Security tracking
    client_ip: str | None = Field(default=None, max_length=45)  # Supports IPv6
    user_agent: str | None = Field(default=None, max_length=255)
