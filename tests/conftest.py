"""
Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database (aiosqlite) created from the
SQLModel metadata for every test function. Redis is disabled (the identity
cache degrades to direct reads) and SMS goes to a recording sender.
"""

import os

# Settings are read at import time, so the test environment must be in place
# before anything from nursery_auth is imported.
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["ENVIRONMENT"] = "staging"
os.environ["SMS_ENABLED"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production-use-0123456789")

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import nursery_auth.models  # noqa: E402, F401  # registers all tables
from nursery_auth.core.database import get_db  # noqa: E402
from nursery_auth.core.redis import get_redis  # noqa: E402
from nursery_auth.core.security import get_password_hash  # noqa: E402
from nursery_auth.main import app as main_app  # noqa: E402
from nursery_auth.models.account import (  # noqa: E402
    GuardianChildren,
    Guardians,
    Nurseries,
    Staff,
)
from nursery_auth.services.sms import get_sms_sender  # noqa: E402

GUARDIAN_PHONE = "09012345678"
STAFF_PHONE = "08011112222"
DUAL_PHONE = "07033334444"
KIOSK_LOGIN_ID = "sakura-kiosk"
KIOSK_PASSWORD = "kiosk-pass-123"


class RecordingSmsSender:
    """SMS sender double that keeps every code it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, int]] = []
        self.fail = False

    async def send(self, phone: str, code: str, challenge_id: int) -> bool:
        self.sent.append((phone, code, challenge_id))
        return not self.fail

    def last_code(self, phone: str) -> str:
        for sent_phone, code, _ in reversed(self.sent):
            if sent_phone == phone:
                return code
        raise AssertionError(f"no code sent to {phone}")


@pytest.fixture(scope="function")
async def engine():
    """
    Fresh in-memory database per test.

    StaticPool keeps the single SQLite connection alive for the whole test so
    the schema created here is visible to every session.
    """
    test_engine = create_async_engine(
        os.environ["DATABASE_URL"],
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture(scope="function")
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a new database session for each test."""
    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a file-backed SQLite database.

    Each session gets its own connection, so tests can run several requests
    concurrently with ``asyncio.gather`` the way separate HTTP requests would.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


@pytest.fixture(scope="function")
def app(db_session: AsyncSession, sms_sender: RecordingSmsSender) -> FastAPI:
    """
    FastAPI app wired to the test database, no Redis and the recording SMS sender.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_redis() -> AsyncGenerator[None, None]:
        yield None

    main_app.dependency_overrides[get_db] = override_get_db
    main_app.dependency_overrides[get_redis] = override_get_redis
    main_app.dependency_overrides[get_sms_sender] = lambda: sms_sender

    yield main_app

    main_app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    Create async HTTP client for testing API endpoints.

    Usage:
        async def test_endpoint(client):
            response = await client.post("/api/v1/auth/check-user", json={...})
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest.fixture
async def nursery(db_session: AsyncSession) -> Nurseries:
    """Nursery 1 with a kiosk account (password KIOSK_PASSWORD)."""
    nursery = Nurseries(
        id=1,
        name="Sakura Nursery",
        login_id=KIOSK_LOGIN_ID,
        password_hash=get_password_hash(KIOSK_PASSWORD),
    )
    db_session.add(nursery)
    await db_session.commit()
    await db_session.refresh(nursery)
    return nursery


@pytest.fixture
async def guardian(db_session: AsyncSession) -> Guardians:
    """Guardian-only account with two children."""
    guardian = Guardians(
        id=10,
        name="Hanako Yamada",
        phone=GUARDIAN_PHONE,
        email="hanako@example.com",
    )
    db_session.add(guardian)
    db_session.add(GuardianChildren(guardian_id=10, child_id=100))
    db_session.add(GuardianChildren(guardian_id=10, child_id=101))
    await db_session.commit()
    await db_session.refresh(guardian)
    return guardian


@pytest.fixture
async def staff_admin(db_session: AsyncSession, nursery: Nurseries) -> Staff:
    """Staff-only account with the admin staff role in nursery 1."""
    staff = Staff(
        nursery_id=1,
        staff_id=1,
        name="Taro Suzuki",
        phone=STAFF_PHONE,
        email="taro@example.com",
        role="admin",
        position="Director",
    )
    db_session.add(staff)
    await db_session.commit()
    await db_session.refresh(staff)
    return staff


@pytest.fixture
async def dual_role(db_session: AsyncSession, nursery: Nurseries) -> tuple[Guardians, Staff]:
    """Phone registered both as a guardian and as a teacher in nursery 1."""
    guardian = Guardians(id=20, name="Keiko Tanaka", phone=DUAL_PHONE)
    staff = Staff(
        nursery_id=1,
        staff_id=2,
        name="Keiko Tanaka",
        phone=DUAL_PHONE,
        role="teacher",
        position="Class Teacher",
    )
    db_session.add(guardian)
    db_session.add(staff)
    db_session.add(GuardianChildren(guardian_id=20, child_id=200))
    await db_session.commit()
    await db_session.refresh(guardian)
    await db_session.refresh(staff)
    return guardian, staff
