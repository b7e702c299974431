"""
SQLModel-based account registry models.

Guardians, staff and nurseries are owned by the wider nursery application.
The authentication core only reads guardians/staff to build token claims and
writes ``last_login_at``. The nursery row doubles as the kiosk account for
the shared entry/exit terminal, so its lockout fields live here too.

GuardianBase (shared public fields)
    └─> Guardians (database table, adds internal fields)
"""

from datetime import datetime

from sqlalchemy import ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel


class GuardianBase(SQLModel):
    """Public guardian fields."""

    name: str = Field(max_length=100)
    email: str | None = Field(default=None, max_length=200)


class Guardians(GuardianBase, table=True):
    """
    Database table for guardians (parents).

    Internal fields (should NOT be exposed via public API):
    - phone: Login identifier
    - is_active: Deactivated guardians cannot log in
    """

    __tablename__ = "guardians"

    __table_args__ = (Index("idx_guardians_phone", "phone"),)

    id: int | None = Field(default=None, primary_key=True)
    phone: str = Field(max_length=20)
    is_active: bool = Field(default=True)
    created_at: datetime | None = Field(default=None)
    last_login_at: datetime | None = Field(default=None)


class GuardianChildren(SQLModel, table=True):
    """
    Link rows between guardians and children.

    Child records belong to another bounded context; only the link is
    needed here to report ``child_count``.
    """

    __tablename__ = "guardian_children"

    __table_args__ = (
        ForeignKeyConstraint(
            ["guardian_id"],
            ["guardians.id"],
            ondelete="CASCADE",
            name="fk_guardian_children_guardian_id",
        ),
        Index("idx_guardian_children_guardian_id", "guardian_id"),
    )

    guardian_id: int = Field(primary_key=True)
    child_id: int = Field(primary_key=True)
    is_active: bool = Field(default=True)


class Staff(SQLModel, table=True):
    """
    Database table for nursery staff.

    Staff are keyed by (nursery_id, staff_id). ``role`` is the staff member's
    job role within the nursery (e.g. "teacher", "admin"), unrelated to the
    login role carried in tokens.
    """

    __tablename__ = "staff"

    __table_args__ = (
        ForeignKeyConstraint(
            ["nursery_id"],
            ["nurseries.id"],
            ondelete="CASCADE",
            name="fk_staff_nursery_id",
        ),
        Index("idx_staff_phone", "phone"),
    )

    nursery_id: int = Field(primary_key=True)
    staff_id: int = Field(primary_key=True)
    name: str = Field(max_length=100)
    phone: str = Field(max_length=20)
    email: str | None = Field(default=None, max_length=200)
    role: str = Field(default="teacher", max_length=50)
    position: str | None = Field(default=None, max_length=100)
    is_active: bool = Field(default=True)
    last_login_at: datetime | None = Field(default=None)


class Nurseries(SQLModel, table=True):
    """
    Database table for nurseries, including the kiosk login account.

    Kiosk lockout invariant: ``is_locked`` implies ``locked_until`` is set.
    A lapsed lock is cleared lazily on the next login attempt.

    Internal fields (should NOT be exposed via public API):
    - login_id, password_hash
    - login_attempts, is_locked, locked_until
    """

    __tablename__ = "nurseries"

    __table_args__ = (Index("idx_nurseries_login_id", "login_id", unique=True),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)

    # Kiosk credentials (bcrypt)
    login_id: str = Field(max_length=50)
    password_hash: str = Field(max_length=255)

    # Lockout tracking
    login_attempts: int = Field(default=0)
    is_locked: bool = Field(default=False)
    locked_until: datetime | None = Field(default=None)

    last_login_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)
