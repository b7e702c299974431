"""
Authentication API endpoints.

This module provides endpoints for:
- Phone lookup and SMS code sending
- Code verification with dual-role resolution
- Token refresh (rotation with reuse detection)
- Logout (single token or every session of the caller)
"""

from typing import Annotated

import redis.asyncio as redis
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import settings
from nursery_auth.core.auth import CurrentPrincipal, get_client_ip, get_user_agent
from nursery_auth.core.database import get_db
from nursery_auth.core.logging import get_logger
from nursery_auth.core.redis import get_redis
from nursery_auth.schemas.auth import (
    CheckUserResponse,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    PhoneRequest,
    PrincipalResponse,
    RefreshRequest,
    RoleSelectionResponse,
    SelectRoleRequest,
    SendCodeResponse,
    TokenResponse,
    VerifyCodeRequest,
)
from nursery_auth.services.identity import resolve_identity
from nursery_auth.services.login import Authenticated, select_role, verify_and_login
from nursery_auth.services.otp import send_code
from nursery_auth.services.sms import SmsSender, get_sms_sender
from nursery_auth.services.tokens import (
    revoke_all_refresh_tokens,
    revoke_refresh_token,
    rotate_refresh_token,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

RedisClient = Annotated[redis.Redis | None, Depends(get_redis)]  # type: ignore[type-arg]


@router.post("/check-user", response_model=CheckUserResponse)
async def check_user(
    body: PhoneRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    redis_client: RedisClient,
) -> CheckUserResponse:
    """
    Report which roles a phone number is registered under.

    Only role flags are returned; profile data is released after verification.
    """
    lookup = await resolve_identity(db, body.phone, redis_client)
    return CheckUserResponse(
        exists=lookup.is_known,
        is_parent=lookup.guardian is not None,
        is_staff=lookup.staff is not None,
        requires_role_selection=lookup.requires_role_selection,
    )


@router.post("/send-code", response_model=SendCodeResponse)
async def send_verification_code(
    body: PhoneRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    redis_client: RedisClient,
    sender: Annotated[SmsSender, Depends(get_sms_sender)],
) -> SendCodeResponse:
    """
    Send a one-time passcode by SMS.

    Flow:
    1. Phone must belong to a guardian or staff member
    2. At most 3 codes per phone in 24 hours (not enforced in development)
    3. At least 60 seconds between codes (not enforced in development)
    4. Store a hashed challenge valid for 5 minutes
    5. Dispatch by SMS (503 if the gateway fails; retry after the cooldown)
    """
    await send_code(
        db,
        body.phone,
        sender,
        client_ip=get_client_ip(request),
        user_agent=get_user_agent(request),
        redis_client=redis_client,
    )
    return SendCodeResponse(
        message="Verification code sent",
        expires_in=settings.OTP_TTL_SECONDS,
    )


@router.post("/verify", response_model=LoginResponse | RoleSelectionResponse)
async def verify(
    body: VerifyCodeRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    redis_client: RedisClient,
) -> LoginResponse | RoleSelectionResponse:
    """
    Verify a code and log in.

    Phones registered under one role (or with a saved role preference) receive
    tokens immediately. Dual-role phones otherwise receive the available roles
    and a selection token to pass to /auth/select-role.
    """
    result = await verify_and_login(
        db,
        body.phone,
        body.code,
        client_ip=get_client_ip(request),
        user_agent=get_user_agent(request),
        redis_client=redis_client,
    )
    if isinstance(result, Authenticated):
        return LoginResponse.from_result(result)
    return RoleSelectionResponse.from_result(result)


@router.post("/select-role", response_model=LoginResponse)
async def select_login_role(
    body: SelectRoleRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    redis_client: RedisClient,
) -> LoginResponse:
    """
    Complete a dual-role login with the chosen role.

    Requires the selection token from /auth/verify. Set remember_choice to
    skip the prompt on later logins.
    """
    result = await select_role(
        db,
        body.phone,
        body.role,
        body.selection_token,
        remember_choice=body.remember_choice,
        client_ip=get_client_ip(request),
        user_agent=get_user_agent(request),
        redis_client=redis_client,
    )
    return LoginResponse.from_result(result)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TokenResponse:
    """
    Exchange an access/refresh token pair for a new pair.

    The access token may be expired. Presenting a used, revoked, expired or
    mismatched refresh token revokes every session of the subject.
    """
    pair = await rotate_refresh_token(
        db,
        body.access_token,
        body.refresh_token,
        client_ip=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    """
    Revoke a refresh token.

    Idempotent: unknown or already revoked tokens also succeed. The access
    token is not revoked and expires naturally.
    """
    await revoke_refresh_token(db, body.refresh_token)
    return MessageResponse(message="Successfully logged out")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all_devices(
    principal: CurrentPrincipal,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    """Revoke every refresh token of the caller ("log out everywhere")."""
    revoked = await revoke_all_refresh_tokens(db, principal.role, principal.subject_id)
    logger.info(
        "logout_all",
        role=principal.role,
        subject_id=principal.subject_id,
        revoked_count=revoked,
        client_ip=get_client_ip(request),
    )
    return MessageResponse(message="Successfully logged out from all devices")


@router.get("/me", response_model=PrincipalResponse)
async def get_current_principal_info(principal: CurrentPrincipal) -> PrincipalResponse:
    """Identity asserted by the caller's access token."""
    public_claims = {
        key: value
        for key, value in principal.claims.items()
        if key not in ("iat", "exp", "iss", "aud", "jti", "type")
    }
    return PrincipalResponse(
        subject_id=principal.subject_id,
        role=principal.role,
        claims=public_claims,
    )
