"""
Access/refresh token issuance, rotation and revocation.

Every refresh token is persisted (hashed) together with the ``jti`` of the
access token it was issued with. Rotation requires both halves of the pair:

1. Decode the access token with expiry ignored (signature, issuer and
   audience still verified)
2. Look up the refresh token for that subject; absent, revoked or expired
   means the token was replayed or stolen, so every live refresh token of
   the subject is revoked
3. The stored jwt_id must match the access token's jti, else revoke all
4. Revoke the consumed row with a conditional update so that two concurrent
   rotations of one token cannot both succeed, then issue a new pair
"""

from datetime import datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import UserRole, settings
from nursery_auth.core.database import utcnow
from nursery_auth.core.errors import InvalidOrExpiredRefreshToken, TokenPairMismatch
from nursery_auth.core.logging import get_logger
from nursery_auth.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_refresh_token,
)
from nursery_auth.models.refresh_token import RefreshTokens
from nursery_auth.services.identity import (
    GuardianIdentity,
    StaffIdentity,
    claims_of,
    load_identity_for_subject,
)

logger = get_logger(__name__)

# Roles that receive refresh tokens (kiosk sessions renew by heartbeat instead)
REFRESHABLE_ROLES = frozenset({UserRole.GUARDIAN, UserRole.STAFF})


class TokenPair(BaseModel):
    """An access token and the refresh token issued alongside it."""

    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime
    jti: str
    refresh_token_id: int

    @property
    def expires_in(self) -> int:
        remaining = self.access_token_expires_at - utcnow()
        return max(0, int(remaining.total_seconds()))


async def persist_refresh_token(
    db: AsyncSession,
    token: str,
    jwt_id: str,
    subject_id: str,
    role: str,
    client_ip: str | None = None,
    user_agent: str | None = None,
    parent_token_id: int | None = None,
) -> RefreshTokens:
    """
    Store a refresh token (hashed) paired with an access token's jti.

    The row is flushed, not committed; callers commit.
    """
    now = utcnow()
    row = RefreshTokens(
        token_hash=hash_refresh_token(token),
        jwt_id=jwt_id,
        subject_id=subject_id,
        role=role,
        created_at=now,
        expires_at=now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        client_ip=client_ip,
        user_agent=user_agent[:255] if user_agent else None,
        parent_token_id=parent_token_id,
    )
    db.add(row)
    await db.flush()
    return row


async def issue_token_pair(
    db: AsyncSession,
    identity: GuardianIdentity | StaffIdentity,
    client_ip: str | None = None,
    user_agent: str | None = None,
    parent_token_id: int | None = None,
) -> TokenPair:
    """
    Issue and persist a new access/refresh token pair for ``identity``.

    Args:
        db: Database session
        identity: Guardian or staff identity the tokens are for
        client_ip: Requesting client IP
        user_agent: Requesting client User-Agent
        parent_token_id: Refresh token row this pair replaces (rotation)

    Returns:
        TokenPair (refresh token value is only available here)
    """
    access = create_access_token(identity.subject_id, identity.login_role, claims_of(identity))
    refresh_token = create_refresh_token()

    row = await persist_refresh_token(
        db,
        refresh_token,
        jwt_id=access.jti,
        subject_id=identity.subject_id,
        role=identity.login_role,
        client_ip=client_ip,
        user_agent=user_agent,
        parent_token_id=parent_token_id,
    )
    await db.commit()

    if row.id is None:
        raise ValueError("Refresh token ID cannot be None")

    return TokenPair(
        access_token=access.token,
        access_token_expires_at=access.expires_at,
        refresh_token=refresh_token,
        refresh_token_expires_at=row.expires_at,
        jti=access.jti,
        refresh_token_id=row.id,
    )


async def revoke_all_refresh_tokens(db: AsyncSession, role: str, subject_id: str) -> int:
    """
    Revoke every live refresh token of a subject.

    Returns:
        Number of tokens revoked
    """
    result = await db.execute(
        update(RefreshTokens)
        .where(RefreshTokens.role == role)  # type: ignore[arg-type]
        .where(RefreshTokens.subject_id == subject_id)  # type: ignore[arg-type]
        .where(RefreshTokens.is_revoked == False)  # type: ignore[arg-type]  # noqa: E712
        .values(is_revoked=True, revoked_at=utcnow())
    )
    await db.commit()
    return result.rowcount or 0  # type: ignore[attr-defined]


async def revoke_refresh_token(db: AsyncSession, refresh_token: str) -> bool:
    """
    Revoke a single refresh token.

    Idempotent: unknown or already-revoked tokens are a no-op.

    Returns:
        True if a live token was revoked by this call
    """
    result = await db.execute(
        update(RefreshTokens)
        .where(RefreshTokens.token_hash == hash_refresh_token(refresh_token))  # type: ignore[arg-type]
        .where(RefreshTokens.is_revoked == False)  # type: ignore[arg-type]  # noqa: E712
        .values(is_revoked=True, revoked_at=utcnow())
    )
    await db.commit()
    return bool(result.rowcount)  # type: ignore[attr-defined]


async def _revoke_subject_after_anomaly(
    db: AsyncSession,
    event: str,
    role: str,
    subject_id: str,
    client_ip: str | None,
    user_agent: str | None,
) -> None:
    revoked = await revoke_all_refresh_tokens(db, role, subject_id)
    logger.warning(
        event,
        role=role,
        subject_id=subject_id,
        revoked_count=revoked,
        client_ip=client_ip,
        user_agent=user_agent,
    )


async def rotate_refresh_token(
    db: AsyncSession,
    access_token: str,
    refresh_token: str,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> TokenPair:
    """
    Exchange a (possibly expired) access token and its refresh token for a new pair.

    Raises:
        InvalidOrExpiredRefreshToken: Undecodable access token, or refresh token
            absent/revoked/expired/concurrently consumed (subject revoked)
        TokenPairMismatch: Refresh token was issued with a different access token
            (subject revoked)
    """
    claims = decode_token(access_token, verify_exp=False)
    if claims is None or claims.get("role") not in REFRESHABLE_ROLES:
        logger.warning("refresh_access_token_invalid", client_ip=client_ip, user_agent=user_agent)
        raise InvalidOrExpiredRefreshToken()

    subject_id = str(claims["sub"])
    role = str(claims["role"])
    jti = str(claims["jti"])

    result = await db.execute(
        select(RefreshTokens)
        .where(RefreshTokens.token_hash == hash_refresh_token(refresh_token))  # type: ignore[arg-type]
        .where(RefreshTokens.subject_id == subject_id)  # type: ignore[arg-type]
        .where(RefreshTokens.role == role)  # type: ignore[arg-type]
    )
    db_token = result.scalar_one_or_none()

    now = utcnow()
    if db_token is None or db_token.is_revoked or db_token.expires_at <= now:
        await _revoke_subject_after_anomaly(
            db, "refresh_token_reuse_detected", role, subject_id, client_ip, user_agent
        )
        raise InvalidOrExpiredRefreshToken()

    if db_token.jwt_id != jti:
        await _revoke_subject_after_anomaly(
            db, "refresh_token_pair_mismatch", role, subject_id, client_ip, user_agent
        )
        raise TokenPairMismatch()

    # Only one concurrent rotation may flip is_revoked
    consumed = await db.execute(
        update(RefreshTokens)
        .where(RefreshTokens.id == db_token.id)  # type: ignore[arg-type]
        .where(RefreshTokens.is_revoked == False)  # type: ignore[arg-type]  # noqa: E712
        .values(is_revoked=True, revoked_at=now)
    )
    if (consumed.rowcount or 0) == 0:  # type: ignore[attr-defined]
        await _revoke_subject_after_anomaly(
            db, "refresh_token_concurrent_reuse", role, subject_id, client_ip, user_agent
        )
        raise InvalidOrExpiredRefreshToken()

    identity = await load_identity_for_subject(db, role, subject_id)
    if identity is None:
        await _revoke_subject_after_anomaly(
            db, "refresh_subject_inactive", role, subject_id, client_ip, user_agent
        )
        raise InvalidOrExpiredRefreshToken()

    pair = await issue_token_pair(
        db,
        identity,
        client_ip=client_ip,
        user_agent=user_agent,
        parent_token_id=db_token.id,
    )

    logger.info(
        "refresh_token_rotated",
        role=role,
        subject_id=subject_id,
        parent_token_id=db_token.id,
        refresh_token_id=pair.refresh_token_id,
    )
    return pair
