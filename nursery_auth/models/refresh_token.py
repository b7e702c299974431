"""
SQLModel-based RefreshToken model.

Each refresh token is issued alongside one access token and remembers that
token's ``jti`` so the pair can be checked on rotation.

Security features:
- Stores hashed tokens (not plaintext)
- Single use: rotation revokes the row and appends a child row
- parent_token_id links rotation chains for auditing
- Rows are revoked, never deleted
"""

from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from nursery_auth.core.database import utcnow


class RefreshTokens(SQLModel, table=True):
    """
    Database table for refresh tokens.

    A subject is (role, subject_id): guardians use their id, staff use
    "<nursery_id>:<staff_id>".
    """

    __tablename__ = "refresh_tokens"

    __table_args__ = (
        Index("idx_refresh_tokens_token_hash", "token_hash", unique=True),
        Index("idx_refresh_tokens_subject", "role", "subject_id"),
    )

    id: int | None = Field(default=None, primary_key=True)

    # Token (hashed for security - never store plaintext!)
    token_hash: str = Field(max_length=64)

    # jti of the access token issued with this refresh token
    jwt_id: str = Field(max_length=36)

    subject_id: str = Field(max_length=50)
    role: str = Field(max_length=20)

    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    # Revocation
    is_revoked: bool = Field(default=False)
    revoked_at: datetime | None = Field(default=None)

    # Security tracking
    client_ip: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=255)

    # Parent token tracking (for rotation chains)
    parent_token_id: int | None = Field(default=None)
