"""Saved login-role preference for dual-role phone numbers."""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.core.database import utcnow
from nursery_auth.core.logging import get_logger, mask_phone
from nursery_auth.models.role_preference import RolePreferences

logger = get_logger(__name__)


async def _get_row(db: AsyncSession, phone: str) -> RolePreferences | None:
    result = await db.execute(
        select(RolePreferences).where(RolePreferences.phone == phone)  # type: ignore[arg-type]
    )
    return result.scalar_one_or_none()


async def get_role_preference(db: AsyncSession, phone: str) -> str | None:
    """Return the saved role for ``phone``, or None."""
    row = await _get_row(db, phone)
    return row.preferred_role if row else None


async def save_role_preference(db: AsyncSession, phone: str, role: str) -> RolePreferences:
    """
    Insert or update the preferred role for ``phone``.

    A concurrent insert for the same phone loses on the unique index and is
    retried as an update.
    """
    now = utcnow()
    row = await _get_row(db, phone)
    if row is None:
        row = RolePreferences(phone=phone, preferred_role=role, created_at=now, updated_at=now)
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            row = await _get_row(db, phone)
            if row is None:
                raise
            row.preferred_role = role
            row.updated_at = now
            await db.commit()
    else:
        row.preferred_role = role
        row.updated_at = now
        await db.commit()

    logger.info("role_preference_saved", phone=mask_phone(phone), role=role)
    return row
