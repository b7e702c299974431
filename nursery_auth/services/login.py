"""
Phone login flow: code verification and dual-role resolution.

    send code -> verify code -> Authenticated
                             -> AwaitingRoleSelection -> select role -> Authenticated

A phone registered as both guardian and staff either logs straight in with
its saved preference or receives a short-lived selection token. The token is
bound to the verified challenge, and ``select_role`` consumes the challenge's
``role_selected_at`` marker so one verification yields at most one login.
"""

from datetime import timedelta
from typing import Literal

import redis.asyncio as redis
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import TokenType, UserRole, settings
from nursery_auth.core.database import utcnow
from nursery_auth.core.errors import InvalidRoleSelection, RoleSelectionExpired, UserNotFound
from nursery_auth.core.logging import get_logger, mask_phone
from nursery_auth.core.security import create_access_token, decode_token
from nursery_auth.models.otp_challenge import OtpChallenges
from nursery_auth.services.identity import (
    GuardianIdentity,
    Identity,
    StaffIdentity,
    invalidate_identity_cache,
    mark_logged_in,
    resolve_identity,
)
from nursery_auth.services.otp import verify_code
from nursery_auth.services.role_preference import get_role_preference, save_role_preference
from nursery_auth.services.tokens import TokenPair, issue_token_pair

logger = get_logger(__name__)


class Authenticated(BaseModel):
    """Login finished: tokens issued for one identity."""

    status: Literal["authenticated"] = "authenticated"
    identity: Identity
    tokens: TokenPair
    redirect_url: str


class AwaitingRoleSelection(BaseModel):
    """Code verified for a dual-role phone; the caller must pick a role."""

    status: Literal["role_selection_required"] = "role_selection_required"
    phone: str
    identities: list[Identity]
    selection_token: str
    expires_in: int


def redirect_url_for(identity: GuardianIdentity | StaffIdentity) -> str:
    if identity.login_role == UserRole.STAFF:
        return settings.STAFF_REDIRECT_URL
    return settings.GUARDIAN_REDIRECT_URL


async def complete_login(
    db: AsyncSession,
    identity: GuardianIdentity | StaffIdentity,
    client_ip: str | None = None,
    user_agent: str | None = None,
    redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
) -> Authenticated:
    """Record the login and issue the first token pair of a session."""
    await mark_logged_in(db, identity)
    tokens = await issue_token_pair(db, identity, client_ip=client_ip, user_agent=user_agent)
    await invalidate_identity_cache(redis_client, identity.phone)

    logger.info(
        "login_succeeded",
        role=identity.login_role,
        subject_id=identity.subject_id,
        client_ip=client_ip,
    )
    return Authenticated(identity=identity, tokens=tokens, redirect_url=redirect_url_for(identity))


def create_selection_token(phone: str, challenge_id: int) -> tuple[str, int]:
    """Sign a role-selection token bound to a verified challenge."""
    ttl = settings.ROLE_SELECTION_TTL_SECONDS
    issued = create_access_token(
        subject_id=phone,
        role="pending",
        claims={"cid": challenge_id},
        expires_delta=timedelta(seconds=ttl),
        token_type=TokenType.ROLE_SELECTION,
    )
    return issued.token, ttl


async def verify_and_login(
    db: AsyncSession,
    phone: str,
    code: str,
    client_ip: str | None = None,
    user_agent: str | None = None,
    redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
) -> Authenticated | AwaitingRoleSelection:
    """
    Verify ``code`` and resolve which role ``phone`` logs in as.

    Single-role phones and dual-role phones with a saved preference are
    authenticated immediately; otherwise role selection is required.
    """
    challenge = await verify_code(db, phone, code)

    # Tokens are issued from current rows, never from the cached lookup
    lookup = await resolve_identity(db, phone)
    if not lookup.is_known:
        # Account deactivated between send and verify
        raise UserNotFound()

    if not lookup.requires_role_selection:
        return await complete_login(db, lookup.identities[0], client_ip, user_agent, redis_client)

    preferred = await get_role_preference(db, phone)
    identity = lookup.for_role(preferred) if preferred else None
    if identity is not None:
        logger.info("role_preference_applied", phone=mask_phone(phone), role=preferred)
        return await complete_login(db, identity, client_ip, user_agent, redis_client)

    if challenge.id is None:
        raise ValueError("Challenge ID cannot be None")
    selection_token, expires_in = create_selection_token(phone, challenge.id)

    logger.info("role_selection_required", phone=mask_phone(phone), roles=lookup.roles)
    return AwaitingRoleSelection(
        phone=phone,
        identities=lookup.identities,
        selection_token=selection_token,
        expires_in=expires_in,
    )


async def select_role(
    db: AsyncSession,
    phone: str,
    role: str,
    selection_token: str,
    remember_choice: bool = False,
    client_ip: str | None = None,
    user_agent: str | None = None,
    redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
) -> Authenticated:
    """
    Finish a dual-role login with an explicit role choice.

    The selection token must belong to ``phone`` and to a challenge that was
    verified within ROLE_SELECTION_TTL_SECONDS and not yet used for a role
    selection.

    Raises:
        RoleSelectionExpired: No valid verification to bind this choice to
        InvalidRoleSelection: ``phone`` does not hold ``role``
    """
    claims = decode_token(selection_token, expected_type=TokenType.ROLE_SELECTION)
    if claims is None or claims.get("sub") != phone or not isinstance(claims.get("cid"), int):
        logger.warning(
            "role_selection_token_rejected",
            phone=mask_phone(phone),
            client_ip=client_ip,
            user_agent=user_agent,
        )
        raise RoleSelectionExpired()

    lookup = await resolve_identity(db, phone)
    identity = lookup.for_role(role)
    if identity is None:
        logger.info("role_selection_invalid", phone=mask_phone(phone), role=role)
        raise InvalidRoleSelection()

    now = utcnow()
    verified_after = now - timedelta(seconds=settings.ROLE_SELECTION_TTL_SECONDS)
    result = await db.execute(
        update(OtpChallenges)
        .where(OtpChallenges.id == claims["cid"])  # type: ignore[arg-type]
        .where(OtpChallenges.phone == phone)  # type: ignore[arg-type]
        .where(OtpChallenges.is_used == True)  # type: ignore[arg-type]  # noqa: E712
        .where(OtpChallenges.used_at >= verified_after)  # type: ignore[arg-type,operator]
        .where(OtpChallenges.role_selected_at == None)  # type: ignore[arg-type]  # noqa: E711
        .values(role_selected_at=now)
        .execution_options(synchronize_session=False)
    )
    if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
        logger.warning(
            "role_selection_replayed",
            phone=mask_phone(phone),
            challenge_id=claims["cid"],
            client_ip=client_ip,
            user_agent=user_agent,
        )
        raise RoleSelectionExpired()
    await db.commit()

    if remember_choice:
        await save_role_preference(db, phone, role)

    return await complete_login(db, identity, client_ip, user_agent, redis_client)
