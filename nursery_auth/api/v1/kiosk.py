"""
Kiosk (entry/exit terminal) API endpoints.

This module provides endpoints for:
- Kiosk login with lockout
- Heartbeat renewal of the kiosk token
- Kiosk account administration for a nursery's admin staff
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.core.auth import BearerToken, NurseryAdmin, get_client_ip, get_user_agent
from nursery_auth.core.database import get_db
from nursery_auth.core.errors import Forbidden
from nursery_auth.schemas.auth import MessageResponse
from nursery_auth.schemas.kiosk import (
    KioskChangePasswordRequest,
    KioskLockStatusResponse,
    KioskLoginRequest,
    KioskTokenResponse,
)
from nursery_auth.services.kiosk import (
    change_kiosk_password,
    get_kiosk_lock_status,
    kiosk_heartbeat,
    kiosk_login,
    unlock_kiosk,
)

router = APIRouter(prefix="/kiosk", tags=["Kiosk"])


def _require_own_nursery(admin: NurseryAdmin, nursery_id: int) -> None:
    if admin.nursery_id != nursery_id:
        raise Forbidden()


@router.post("/login", response_model=KioskTokenResponse)
async def login(
    body: KioskLoginRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> KioskTokenResponse:
    """
    Log a kiosk terminal in.

    Security:
    - Locks the account after 5 failed attempts for 30 minutes
    - Attempts during a lock are rejected with the remaining minutes and not counted
    - No refresh token; keep the session alive with /kiosk/heartbeat
    """
    token, nursery = await kiosk_login(
        db,
        body.login_id,
        body.password,
        client_ip=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return KioskTokenResponse(
        access_token=token.token,
        expires_in=token.expires_in,
        expires_at=token.expires_at,
        nursery_id=nursery.id,
        nursery_name=nursery.name,
    )


@router.post("/heartbeat", response_model=KioskTokenResponse)
async def heartbeat(token: BearerToken) -> KioskTokenResponse:
    """
    Renew the kiosk token.

    The current token may be expired, but sessions older than
    KIOSK_MAX_SESSION_HOURS must log in again.
    """
    renewed = kiosk_heartbeat(token)
    return KioskTokenResponse(
        access_token=renewed.token,
        expires_in=renewed.expires_in,
        expires_at=renewed.expires_at,
    )


@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    body: KioskChangePasswordRequest,
    admin: NurseryAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    """Change the kiosk password of the admin's own nursery."""
    if admin.nursery_id is None:
        raise Forbidden()
    await change_kiosk_password(db, admin.nursery_id, body.current_password, body.new_password)
    return MessageResponse(message="Kiosk password changed")


@router.get("/lock-status/{nursery_id}", response_model=KioskLockStatusResponse)
async def lock_status(
    nursery_id: int,
    admin: NurseryAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> KioskLockStatusResponse:
    """Show whether the kiosk account is locked and how many attempts remain."""
    _require_own_nursery(admin, nursery_id)
    status = await get_kiosk_lock_status(db, nursery_id)
    return KioskLockStatusResponse(**status.model_dump())


@router.post("/unlock/{nursery_id}", response_model=MessageResponse)
async def unlock(
    nursery_id: int,
    admin: NurseryAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    """Clear a kiosk lock before it lapses."""
    _require_own_nursery(admin, nursery_id)
    await unlock_kiosk(db, nursery_id)
    return MessageResponse(message="Kiosk account unlocked")
