"""
One-time passcode issuance and verification.

Rate limits are derived from the append-only ``otp_challenges`` rows rather
than separate counters:

- Sends: at most OTP_DAILY_SEND_LIMIT per phone in a trailing 24 hours, and
  at least OTP_RESEND_COOLDOWN_SECONDS between sends (both skipped in
  development).
- Verifications: at most OTP_MAX_VERIFY_ATTEMPTS summed over challenges
  created in the trailing OTP_VERIFY_WINDOW_SECONDS.
"""

from datetime import timedelta

import redis.asyncio as redis
from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import settings
from nursery_auth.core.database import utcnow
from nursery_auth.core.errors import (
    CooldownActive,
    InvalidCode,
    InvalidOrExpiredCode,
    RateLimitExceeded,
    SendFailed,
    UserNotFound,
    VerificationRateLimitExceeded,
)
from nursery_auth.core.logging import get_logger, mask_phone
from nursery_auth.core.security import generate_otp, hash_otp, verify_otp
from nursery_auth.models.otp_challenge import OtpChallenges
from nursery_auth.services.identity import resolve_identity
from nursery_auth.services.sms import SmsSender

logger = get_logger(__name__)


def send_limits_enabled() -> bool:
    """Send-side daily cap and cooldown apply everywhere except development."""
    return settings.ENVIRONMENT != "development"


async def _latest_challenge(db: AsyncSession, phone: str) -> OtpChallenges | None:
    result = await db.execute(
        select(OtpChallenges)
        .where(OtpChallenges.phone == phone)  # type: ignore[arg-type]
        .order_by(desc(OtpChallenges.created_at), desc(OtpChallenges.id))  # type: ignore[arg-type]
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_recent_sends(db: AsyncSession, phone: str, hours: int = 24) -> int:
    """Number of challenges created for ``phone`` in the trailing ``hours``."""
    since = utcnow() - timedelta(hours=hours)
    result = await db.execute(
        select(func.count())
        .select_from(OtpChallenges)
        .where(OtpChallenges.phone == phone)  # type: ignore[arg-type]
        .where(OtpChallenges.created_at > since)  # type: ignore[arg-type]
    )
    return result.scalar_one()


async def count_recent_attempts(db: AsyncSession, phone: str) -> int:
    """Verification attempts summed over the challenges in the verify window."""
    since = utcnow() - timedelta(seconds=settings.OTP_VERIFY_WINDOW_SECONDS)
    result = await db.execute(
        select(func.coalesce(func.sum(OtpChallenges.attempt_count), 0))
        .where(OtpChallenges.phone == phone)  # type: ignore[arg-type]
        .where(OtpChallenges.created_at >= since)  # type: ignore[arg-type]
    )
    return int(result.scalar_one())


async def send_code(
    db: AsyncSession,
    phone: str,
    sender: SmsSender,
    client_ip: str | None = None,
    user_agent: str | None = None,
    redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
) -> OtpChallenges:
    """
    Create a challenge for ``phone`` and dispatch its code by SMS.

    Checks, in order: known phone, daily cap, cooldown. The challenge row is
    committed before dispatch and is kept even when dispatch fails.

    Args:
        db: Database session
        phone: Normalized phone number
        sender: SMS sender
        client_ip: Requesting client IP
        user_agent: Requesting client User-Agent
        redis_client: Optional Redis client for the identity cache

    Returns:
        The stored challenge

    Raises:
        UserNotFound, RateLimitExceeded, CooldownActive, SendFailed
    """
    lookup = await resolve_identity(db, phone, redis_client)
    if not lookup.is_known:
        logger.info("otp_send_unknown_phone", phone=mask_phone(phone), client_ip=client_ip)
        raise UserNotFound()

    now = utcnow()

    if send_limits_enabled():
        sent_today = await count_recent_sends(db, phone)
        if sent_today >= settings.OTP_DAILY_SEND_LIMIT:
            logger.info(
                "otp_daily_limit_reached",
                phone=mask_phone(phone),
                sent=sent_today,
                limit=settings.OTP_DAILY_SEND_LIMIT,
            )
            raise RateLimitExceeded()

        latest = await _latest_challenge(db, phone)
        if latest is not None:
            elapsed = (now - latest.created_at).total_seconds()
            if elapsed < settings.OTP_RESEND_COOLDOWN_SECONDS:
                retry_after = max(1, int(settings.OTP_RESEND_COOLDOWN_SECONDS - elapsed))
                logger.info("otp_cooldown_active", phone=mask_phone(phone), retry_after=retry_after)
                raise CooldownActive(retry_after_seconds=retry_after)

    code = generate_otp()
    challenge = OtpChallenges(
        phone=phone,
        code_hash=hash_otp(phone, code),
        created_at=now,
        expires_at=now + timedelta(seconds=settings.OTP_TTL_SECONDS),
        client_ip=client_ip,
        user_agent=user_agent[:255] if user_agent else None,
    )
    db.add(challenge)
    await db.commit()
    await db.refresh(challenge)

    if challenge.id is None:
        raise ValueError("Challenge ID cannot be None")

    if not await sender.send(phone, code, challenge.id):
        logger.warning("otp_dispatch_failed", phone=mask_phone(phone), challenge_id=challenge.id)
        raise SendFailed()

    logger.info("otp_sent", phone=mask_phone(phone), challenge_id=challenge.id, client_ip=client_ip)
    return challenge


async def verify_code(db: AsyncSession, phone: str, code: str) -> OtpChallenges:
    """
    Verify a submitted code against the newest live challenge for ``phone``.

    The attempt is counted and committed before the code is compared, so a
    wrong guess is never free. Only the most recently created challenge is
    eligible; a newer send supersedes every older challenge.

    Args:
        db: Database session
        phone: Normalized phone number
        code: Submitted 6-digit code

    Returns:
        The consumed challenge (``is_used`` set)

    Raises:
        VerificationRateLimitExceeded, InvalidOrExpiredCode, InvalidCode
    """
    attempts = await count_recent_attempts(db, phone)
    if attempts >= settings.OTP_MAX_VERIFY_ATTEMPTS:
        logger.info("otp_verify_limit_reached", phone=mask_phone(phone), attempts=attempts)
        raise VerificationRateLimitExceeded()

    now = utcnow()
    challenge = await _latest_challenge(db, phone)
    if challenge is None or challenge.is_used or challenge.expires_at <= now:
        logger.info("otp_no_live_challenge", phone=mask_phone(phone))
        raise InvalidOrExpiredCode()

    # Count the attempt atomically before checking the code
    await db.execute(
        update(OtpChallenges)
        .where(OtpChallenges.id == challenge.id)  # type: ignore[arg-type]
        .values(attempt_count=OtpChallenges.attempt_count + 1)
    )
    await db.commit()

    # Concurrent requests may all pass the first check; only those whose
    # increment stayed within the limit get to compare a code
    attempts = await count_recent_attempts(db, phone)
    if attempts > settings.OTP_MAX_VERIFY_ATTEMPTS:
        logger.info("otp_verify_limit_reached", phone=mask_phone(phone), attempts=attempts)
        raise VerificationRateLimitExceeded()

    if not verify_otp(phone, code, challenge.code_hash):
        logger.info("otp_invalid_code", phone=mask_phone(phone), challenge_id=challenge.id)
        raise InvalidCode()

    result = await db.execute(
        update(OtpChallenges)
        .where(OtpChallenges.id == challenge.id)  # type: ignore[arg-type]
        .where(OtpChallenges.is_used == False)  # type: ignore[arg-type]  # noqa: E712
        .values(is_used=True, used_at=now)
    )
    if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
        # A concurrent request consumed the challenge first
        logger.warning("otp_challenge_race", phone=mask_phone(phone), challenge_id=challenge.id)
        raise InvalidOrExpiredCode()
    await db.commit()
    await db.refresh(challenge)

    logger.info("otp_verified", phone=mask_phone(phone), challenge_id=challenge.id)
    return challenge
