"""
Identity resolution by phone number.

A phone may belong to a guardian, a staff member, or both. The resolved
accounts are modelled as a tagged union (``Identity``) so that token minting
only ever calls ``claims_of(identity)`` and never inspects account types.

Lookups are cached in Redis for IDENTITY_CACHE_TTL seconds. Redis failures
fall back to a direct database read.
"""

from datetime import datetime
from typing import Annotated, Literal

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field
from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import UserRole, settings
from nursery_auth.core.database import utcnow
from nursery_auth.core.logging import get_logger, mask_phone
from nursery_auth.models.account import GuardianChildren, Guardians, Staff

logger = get_logger(__name__)


class GuardianIdentity(BaseModel):
    """A guardian account resolved from a phone number."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["guardian"] = "guardian"
    id: int
    phone: str
    name: str
    email: str | None = None
    child_count: int = 0
    last_login_at: datetime | None = None

    @property
    def login_role(self) -> str:
        return UserRole.GUARDIAN

    @property
    def subject_id(self) -> str:
        return str(self.id)


class StaffIdentity(BaseModel):
    """A staff account resolved from a phone number."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["staff"] = "staff"
    nursery_id: int
    staff_id: int
    phone: str
    name: str
    email: str | None = None
    staff_role: str
    position: str | None = None
    last_login_at: datetime | None = None

    @property
    def login_role(self) -> str:
        return UserRole.STAFF

    @property
    def subject_id(self) -> str:
        return f"{self.nursery_id}:{self.staff_id}"


Identity = Annotated[GuardianIdentity | StaffIdentity, Field(discriminator="kind")]


def claims_of(identity: GuardianIdentity | StaffIdentity) -> dict[str, str]:
    """
    Role-specific claims carried by an access token.

    Pure function: the same identity always yields the same claims.
    """
    if isinstance(identity, GuardianIdentity):
        return {
            "user_type": "parent",
            "parent_id": str(identity.id),
            "phone": identity.phone,
            "name": identity.name,
        }

    claims = {
        "user_type": "staff",
        "nursery_id": str(identity.nursery_id),
        "staff_id": str(identity.staff_id),
        "staff_role": identity.staff_role,
        "phone": identity.phone,
        "name": identity.name,
    }
    if identity.position:
        claims["position"] = identity.position
    if identity.email:
        claims["email"] = identity.email
    return claims


class IdentityLookup(BaseModel):
    """Everything the login flow needs to know about a phone number."""

    phone: str
    guardian: GuardianIdentity | None = None
    staff: StaffIdentity | None = None

    @property
    def is_known(self) -> bool:
        return self.guardian is not None or self.staff is not None

    @property
    def requires_role_selection(self) -> bool:
        return self.guardian is not None and self.staff is not None

    @property
    def identities(self) -> list[GuardianIdentity | StaffIdentity]:
        """Available identities, guardian first."""
        return [i for i in (self.guardian, self.staff) if i is not None]

    @property
    def roles(self) -> list[str]:
        return [identity.login_role for identity in self.identities]

    def for_role(self, role: str) -> GuardianIdentity | StaffIdentity | None:
        """Return the identity held under ``role``, if any."""
        for identity in self.identities:
            if identity.login_role == role:
                return identity
        return None


def _make_cache_key(phone: str) -> str:
    """Generate Redis cache key for a phone lookup."""
    return f"identity_lookup:{phone}"


async def load_guardian(db: AsyncSession, phone: str) -> GuardianIdentity | None:
    """Load the active guardian registered under ``phone``."""
    result = await db.execute(
        select(Guardians)
        .where(Guardians.phone == phone)  # type: ignore[arg-type]
        .where(Guardians.is_active == True)  # type: ignore[arg-type]  # noqa: E712
        .order_by(Guardians.id)  # type: ignore[arg-type]
        .limit(1)
    )
    guardian = result.scalar_one_or_none()
    if guardian is None:
        return None
    return await _to_guardian_identity(db, guardian)


async def _to_guardian_identity(db: AsyncSession, guardian: Guardians) -> GuardianIdentity:
    if guardian.id is None:
        raise ValueError("Guardian ID cannot be None")
    count_result = await db.execute(
        select(func.count())
        .select_from(GuardianChildren)
        .where(GuardianChildren.guardian_id == guardian.id)  # type: ignore[arg-type]
        .where(GuardianChildren.is_active == True)  # type: ignore[arg-type]  # noqa: E712
    )

    return GuardianIdentity(
        id=guardian.id,
        phone=guardian.phone,
        name=guardian.name,
        email=guardian.email,
        child_count=count_result.scalar_one(),
        last_login_at=guardian.last_login_at,
    )


async def load_staff(db: AsyncSession, phone: str) -> StaffIdentity | None:
    """Load the active staff member registered under ``phone``."""
    result = await db.execute(
        select(Staff)
        .where(Staff.phone == phone)  # type: ignore[arg-type]
        .where(Staff.is_active == True)  # type: ignore[arg-type]  # noqa: E712
        .order_by(Staff.nursery_id, Staff.staff_id)  # type: ignore[arg-type]
        .limit(1)
    )
    staff = result.scalar_one_or_none()
    if staff is None:
        return None
    return _to_staff_identity(staff)


def _to_staff_identity(staff: Staff) -> StaffIdentity:
    return StaffIdentity(
        nursery_id=staff.nursery_id,
        staff_id=staff.staff_id,
        phone=staff.phone,
        name=staff.name,
        email=staff.email,
        staff_role=staff.role,
        position=staff.position,
        last_login_at=staff.last_login_at,
    )


async def resolve_identity(
    db: AsyncSession,
    phone: str,
    redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
) -> IdentityLookup:
    """
    Resolve which accounts a normalized phone number belongs to.

    Args:
        db: Database session
        phone: Normalized phone number
        redis_client: Optional Redis client for caching

    Returns:
        IdentityLookup (``is_known`` is False for unregistered phones)
    """
    cache_key = _make_cache_key(phone)

    if redis_client is not None:
        try:
            cached = await redis_client.get(cache_key)
        except RedisError as e:
            logger.warning("identity_cache_unavailable", error=str(e))
            cached = None
        if cached:
            try:
                return IdentityLookup.model_validate_json(cached)
            except ValueError:
                # Cache corrupted, fall through to database
                pass

    lookup = IdentityLookup(
        phone=phone,
        guardian=await load_guardian(db, phone),
        staff=await load_staff(db, phone),
    )

    if redis_client is not None and lookup.is_known:
        try:
            await redis_client.setex(
                cache_key, settings.IDENTITY_CACHE_TTL, lookup.model_dump_json()
            )
        except RedisError as e:
            logger.warning("identity_cache_write_failed", error=str(e))

    logger.debug(
        "identity_resolved",
        phone=mask_phone(phone),
        roles=lookup.roles,
    )
    return lookup


async def invalidate_identity_cache(
    redis_client: redis.Redis | None,  # type: ignore[type-arg]
    phone: str,
) -> None:
    """
    Drop the cached lookup for a phone.

    Call after last_login_at changes so profile snippets stay current.
    """
    if redis_client is None:
        return
    try:
        await redis_client.delete(_make_cache_key(phone))
    except RedisError as e:
        logger.warning("identity_cache_invalidate_failed", error=str(e))


async def load_identity_for_subject(
    db: AsyncSession,
    role: str,
    subject_id: str,
) -> GuardianIdentity | StaffIdentity | None:
    """
    Re-read the active account behind a token subject.

    Used on refresh so a rotated token carries current claims and a
    deactivated account cannot keep rotating.
    """
    if role == UserRole.GUARDIAN:
        if not subject_id.isdigit():
            return None
        guardian = await db.get(Guardians, int(subject_id))
        if guardian is None or not guardian.is_active:
            return None
        return await _to_guardian_identity(db, guardian)

    if role == UserRole.STAFF:
        nursery_id, _, staff_id = subject_id.partition(":")
        if not (nursery_id.isdigit() and staff_id.isdigit()):
            return None
        staff = await db.get(Staff, (int(nursery_id), int(staff_id)))
        if staff is None or not staff.is_active:
            return None
        return _to_staff_identity(staff)

    return None


async def mark_logged_in(db: AsyncSession, identity: GuardianIdentity | StaffIdentity) -> None:
    """Record ``last_login_at`` on the account row behind ``identity``."""
    now = utcnow()
    if isinstance(identity, GuardianIdentity):
        guardian = await db.get(Guardians, identity.id)
        if guardian is not None:
            guardian.last_login_at = now
    else:
        staff = await db.get(Staff, (identity.nursery_id, identity.staff_id))
        if staff is not None:
            staff.last_login_at = now
