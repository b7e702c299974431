"""
Kiosk (entry/exit terminal) schemas.
"""

from pydantic import BaseModel, Field

from nursery_auth.schemas.base import UTCDatetime, UTCDatetimeOptional


class KioskLoginRequest(BaseModel):
    login_id: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=255)


class KioskTokenResponse(BaseModel):
    """Kiosk access token. There is no refresh token; renew with heartbeat."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: UTCDatetime
    nursery_id: int | None = None
    nursery_name: str | None = None


class KioskChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=255)
    new_password: str = Field(..., min_length=8, max_length=255)


class KioskLockStatusResponse(BaseModel):
    nursery_id: int
    is_locked: bool
    login_attempts: int
    remaining_attempts: int
    locked_until: UTCDatetimeOptional = None
    remaining_minutes: int = 0
