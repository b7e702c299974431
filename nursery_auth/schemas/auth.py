"""
Authentication schemas for request/response validation.

This module defines Pydantic models for the phone login flow:
- Phone lookup and code sending
- Code verification and role selection
- Token refresh and logout
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from nursery_auth.core.phone import is_valid_phone, normalize_phone
from nursery_auth.schemas.base import UTCDatetimeOptional
from nursery_auth.services.identity import GuardianIdentity, StaffIdentity
from nursery_auth.services.login import Authenticated, AwaitingRoleSelection


class PhoneRequest(BaseModel):
    """Request carrying a phone number; normalized after format validation."""

    phone: str = Field(..., min_length=10, max_length=20, examples=["090-1234-5678"])

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not is_valid_phone(v):
            raise ValueError("Phone number format is invalid")
        return normalize_phone(v)


class CheckUserResponse(BaseModel):
    """Which roles a phone is registered under (no profile data)."""

    exists: bool
    is_parent: bool
    is_staff: bool
    requires_role_selection: bool


class SendCodeResponse(BaseModel):
    message: str
    expires_in: int = Field(..., description="Code lifetime in seconds")


class VerifyCodeRequest(PhoneRequest):
    code: str = Field(..., pattern=r"^\d{6}$")


class SelectRoleRequest(PhoneRequest):
    role: Literal["Parent", "Staff"]
    selection_token: str = Field(..., min_length=1)
    remember_choice: bool = False


class GuardianProfile(BaseModel):
    role: Literal["Parent"] = "Parent"
    id: int
    name: str
    email: str | None = None
    child_count: int
    last_login_at: UTCDatetimeOptional = None


class StaffProfile(BaseModel):
    role: Literal["Staff"] = "Staff"
    nursery_id: int
    staff_id: int
    name: str
    email: str | None = None
    staff_role: str
    position: str | None = None
    last_login_at: UTCDatetimeOptional = None


def profile_of(identity: GuardianIdentity | StaffIdentity) -> GuardianProfile | StaffProfile:
    """Public profile snippet for an identity (phone omitted)."""
    if isinstance(identity, GuardianIdentity):
        return GuardianProfile(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            child_count=identity.child_count,
            last_login_at=identity.last_login_at,
        )
    return StaffProfile(
        nursery_id=identity.nursery_id,
        staff_id=identity.staff_id,
        name=identity.name,
        email=identity.email,
        staff_role=identity.staff_role,
        position=identity.position,
        last_login_at=identity.last_login_at,
    )


class TokenResponse(BaseModel):
    """Response schema for a freshly issued token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token expiration time in seconds from now")


class LoginResponse(TokenResponse):
    status: Literal["authenticated"] = "authenticated"
    role: str
    redirect_url: str
    profile: GuardianProfile | StaffProfile

    @classmethod
    def from_result(cls, result: Authenticated) -> "LoginResponse":
        return cls(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            expires_in=result.tokens.expires_in,
            role=result.identity.login_role,
            redirect_url=result.redirect_url,
            profile=profile_of(result.identity),
        )


class RoleOption(BaseModel):
    role: str
    profile: GuardianProfile | StaffProfile


class RoleSelectionResponse(BaseModel):
    status: Literal["role_selection_required"] = "role_selection_required"
    roles: list[RoleOption]
    selection_token: str
    expires_in: int

    @classmethod
    def from_result(cls, result: AwaitingRoleSelection) -> "RoleSelectionResponse":
        return cls(
            roles=[
                RoleOption(role=identity.login_role, profile=profile_of(identity))
                for identity in result.identities
            ],
            selection_token=result.selection_token,
            expires_in=result.expires_in,
        )


class RefreshRequest(BaseModel):
    """Both halves of the pair are required for rotation."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class PrincipalResponse(BaseModel):
    subject_id: str
    role: str
    claims: dict[str, Any]

