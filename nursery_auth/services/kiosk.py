"""
Kiosk (entry/exit terminal) sessions.

A nursery has one shared kiosk account. Login is by login ID and password
with lockout:

- KIOSK_MAX_LOGIN_ATTEMPTS consecutive failures lock the account for
  KIOSK_LOCKOUT_MINUTES; attempts during a lock are not counted
- A lapsed lock is cleared on the next attempt
- Success issues a KIOSK_TOKEN_EXPIRE_MINUTES access token and no refresh token

The terminal keeps its session alive with heartbeats. A heartbeat accepts an
expired token (signature still verified) and mints a fresh one, but never past
KIOSK_MAX_SESSION_HOURS after the original login.
"""

import math
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import TokenType, UserRole, settings
from nursery_auth.core.database import utcnow
from nursery_auth.core.errors import AccountLocked, InvalidCredentials, InvalidToken, NotFound
from nursery_auth.core.logging import get_logger
from nursery_auth.core.security import (
    IssuedToken,
    create_access_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from nursery_auth.models.account import Nurseries

logger = get_logger(__name__)


class KioskLockStatus(BaseModel):
    nursery_id: int
    is_locked: bool
    login_attempts: int
    remaining_attempts: int
    locked_until: datetime | None = None
    remaining_minutes: int = 0


def _issue_kiosk_token(nursery_id: int, nursery_name: str, session_started_at: int) -> IssuedToken:
    return create_access_token(
        subject_id=str(nursery_id),
        role=UserRole.KIOSK,
        claims={
            "nursery_id": str(nursery_id),
            "nursery_name": nursery_name,
            "token_type": "kiosk",
            "session_started_at": session_started_at,
        },
        expires_delta=timedelta(minutes=settings.KIOSK_TOKEN_EXPIRE_MINUTES),
        token_type=TokenType.KIOSK,
    )


def _clear_lapsed_lock(nursery: Nurseries, now: datetime) -> bool:
    """Lazily unlock an account whose lock has expired. Returns True if cleared."""
    if nursery.is_locked and (nursery.locked_until is None or nursery.locked_until <= now):
        nursery.is_locked = False
        nursery.locked_until = None
        nursery.login_attempts = 0
        nursery.updated_at = now
        return True
    return False


async def kiosk_login(
    db: AsyncSession,
    login_id: str,
    password: str,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> tuple[IssuedToken, Nurseries]:
    """
    Authenticate a kiosk terminal.

    Args:
        db: Database session
        login_id: Nursery kiosk login ID
        password: Plain text password
        client_ip: Requesting client IP
        user_agent: Requesting client User-Agent

    Returns:
        Tuple of (kiosk access token, nursery)

    Raises:
        AccountLocked: Lock in force (attempt not counted)
        InvalidCredentials: Unknown login ID or wrong password
    """
    result = await db.execute(select(Nurseries).where(Nurseries.login_id == login_id))  # type: ignore[arg-type]
    nursery = result.scalar_one_or_none()

    if nursery is None or nursery.id is None:
        logger.info("kiosk_login_unknown_id", login_id=login_id, client_ip=client_ip)
        raise InvalidCredentials()

    now = utcnow()

    if nursery.is_locked and nursery.locked_until and nursery.locked_until > now:
        remaining = (nursery.locked_until - now).total_seconds()
        logger.info("kiosk_login_while_locked", nursery_id=nursery.id, client_ip=client_ip)
        raise AccountLocked(remaining_seconds=remaining)

    if _clear_lapsed_lock(nursery, now):
        logger.info("kiosk_lock_expired", nursery_id=nursery.id)

    if not verify_password(password, nursery.password_hash):
        nursery.login_attempts += 1
        nursery.updated_at = now

        if nursery.login_attempts >= settings.KIOSK_MAX_LOGIN_ATTEMPTS:
            nursery.is_locked = True
            nursery.locked_until = now + timedelta(minutes=settings.KIOSK_LOCKOUT_MINUTES)
            await db.commit()
            logger.warning(
                "kiosk_account_locked",
                nursery_id=nursery.id,
                attempts=nursery.login_attempts,
                client_ip=client_ip,
                user_agent=user_agent,
            )
            raise InvalidCredentials(
                message=(
                    "Incorrect login ID or password. The account has been locked for "
                    f"{settings.KIOSK_LOCKOUT_MINUTES} minutes."
                ),
                locked_minutes=settings.KIOSK_LOCKOUT_MINUTES,
            )

        await db.commit()
        remaining_attempts = settings.KIOSK_MAX_LOGIN_ATTEMPTS - nursery.login_attempts
        logger.info(
            "kiosk_login_failed",
            nursery_id=nursery.id,
            attempts=nursery.login_attempts,
            client_ip=client_ip,
        )
        raise InvalidCredentials(
            message=(
                "Incorrect login ID or password. "
                f"{remaining_attempts} attempts remaining before the account is locked."
            ),
            remaining_attempts=remaining_attempts,
        )

    nursery.login_attempts = 0
    nursery.last_login_at = now
    nursery.updated_at = now
    await db.commit()

    token = _issue_kiosk_token(
        nursery.id, nursery.name, session_started_at=int(datetime.now(UTC).timestamp())
    )
    logger.info("kiosk_login_succeeded", nursery_id=nursery.id, client_ip=client_ip)
    return token, nursery


def kiosk_heartbeat(token: str) -> IssuedToken:
    """
    Renew a kiosk token, accepting an expired one.

    The renewed token keeps the original ``session_started_at`` so repeated
    heartbeats cannot extend a session past KIOSK_MAX_SESSION_HOURS.

    Raises:
        InvalidToken: Bad signature, not a kiosk token, or session too old
    """
    claims: dict[str, Any] | None = decode_token(
        token, verify_exp=False, expected_type=TokenType.KIOSK
    )
    if claims is None or claims.get("role") != UserRole.KIOSK:
        logger.warning("kiosk_heartbeat_invalid_token")
        raise InvalidToken()

    nursery_id = claims.get("nursery_id")
    nursery_name = claims.get("nursery_name")
    session_started_at = claims.get("session_started_at")
    if (
        not isinstance(nursery_id, str)
        or not nursery_id.isdigit()
        or not isinstance(nursery_name, str)
        or not isinstance(session_started_at, int)
    ):
        logger.warning("kiosk_heartbeat_missing_claims")
        raise InvalidToken()

    session_age = datetime.now(UTC).timestamp() - session_started_at
    if session_age > settings.KIOSK_MAX_SESSION_HOURS * 3600:
        logger.info("kiosk_session_ceiling_reached", nursery_id=nursery_id)
        raise InvalidToken(message="Kiosk session has expired. Please log in again.")

    renewed = _issue_kiosk_token(int(nursery_id), nursery_name, session_started_at)
    logger.debug("kiosk_heartbeat", nursery_id=nursery_id)
    return renewed


async def _get_nursery(db: AsyncSession, nursery_id: int) -> Nurseries:
    nursery = await db.get(Nurseries, nursery_id)
    if nursery is None:
        raise NotFound(message="Nursery not found")
    return nursery


async def get_kiosk_lock_status(db: AsyncSession, nursery_id: int) -> KioskLockStatus:
    """Report lock state; a lapsed lock is reported as unlocked without writing."""
    nursery = await _get_nursery(db, nursery_id)
    now = utcnow()

    locked = bool(nursery.is_locked and nursery.locked_until and nursery.locked_until > now)
    attempts = nursery.login_attempts if locked or not nursery.is_locked else 0
    remaining_minutes = 0
    if locked and nursery.locked_until:
        remaining_minutes = max(1, math.ceil((nursery.locked_until - now).total_seconds() / 60))

    return KioskLockStatus(
        nursery_id=nursery_id,
        is_locked=locked,
        login_attempts=attempts,
        remaining_attempts=max(0, settings.KIOSK_MAX_LOGIN_ATTEMPTS - attempts),
        locked_until=nursery.locked_until if locked else None,
        remaining_minutes=remaining_minutes,
    )


async def unlock_kiosk(db: AsyncSession, nursery_id: int) -> None:
    """Clear a lock and reset the failed-attempt counter."""
    nursery = await _get_nursery(db, nursery_id)
    nursery.is_locked = False
    nursery.locked_until = None
    nursery.login_attempts = 0
    nursery.updated_at = utcnow()
    await db.commit()
    logger.info("kiosk_account_unlocked", nursery_id=nursery_id)


async def change_kiosk_password(
    db: AsyncSession,
    nursery_id: int,
    current_password: str,
    new_password: str,
) -> None:
    """
    Replace the kiosk password after checking the current one.

    Raises:
        InvalidCredentials: Current password is wrong
    """
    nursery = await _get_nursery(db, nursery_id)
    if not verify_password(current_password, nursery.password_hash):
        logger.info("kiosk_password_change_rejected", nursery_id=nursery_id)
        raise InvalidCredentials(message="Current password is incorrect")

    await set_kiosk_password(db, nursery_id, new_password)


async def set_kiosk_password(db: AsyncSession, nursery_id: int, new_password: str) -> None:
    """Set the kiosk password without the current one (administrative reset)."""
    nursery = await _get_nursery(db, nursery_id)
    nursery.password_hash = get_password_hash(new_password)
    nursery.updated_at = utcnow()
    await db.commit()
    logger.info("kiosk_password_changed", nursery_id=nursery_id)
