"""Tests for kiosk login lockout, heartbeat renewal and account administration."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from nursery_auth.config import TokenType, UserRole, settings
from nursery_auth.core.database import utcnow
from nursery_auth.core.errors import AccountLocked, InvalidCredentials, InvalidToken, NotFound
from nursery_auth.core.security import create_access_token, decode_token, verify_password
from nursery_auth.models.account import Nurseries
from nursery_auth.services.kiosk import (
    change_kiosk_password,
    get_kiosk_lock_status,
    kiosk_heartbeat,
    kiosk_login,
    set_kiosk_password,
    unlock_kiosk,
)
from tests.conftest import KIOSK_LOGIN_ID, KIOSK_PASSWORD


def _kiosk_token(session_started_at: int, expires_delta: timedelta | None = None) -> str:
    return create_access_token(
        subject_id="1",
        role=UserRole.KIOSK,
        claims={
            "nursery_id": "1",
            "nursery_name": "Sakura Nursery",
            "token_type": "kiosk",
            "session_started_at": session_started_at,
        },
        expires_delta=expires_delta or timedelta(minutes=settings.KIOSK_TOKEN_EXPIRE_MINUTES),
        token_type=TokenType.KIOSK,
    ).token


async def _fail_login(db: AsyncSession, times: int) -> list[InvalidCredentials]:
    errors = []
    for _ in range(times):
        with pytest.raises(InvalidCredentials) as exc_info:
            await kiosk_login(db, KIOSK_LOGIN_ID, "wrong-password")
        errors.append(exc_info.value)
    return errors


@pytest.mark.unit
class TestKioskLogin:
    async def test_success(self, db_session: AsyncSession, nursery: Nurseries):
        token, logged_in = await kiosk_login(db_session, KIOSK_LOGIN_ID, KIOSK_PASSWORD)

        assert logged_in.id == 1
        assert logged_in.last_login_at is not None
        claims = decode_token(token.token, expected_type=TokenType.KIOSK)
        assert claims is not None
        assert claims["role"] == UserRole.KIOSK
        assert claims["nursery_id"] == "1"
        assert claims["nursery_name"] == "Sakura Nursery"
        assert claims["token_type"] == "kiosk"
        assert isinstance(claims["session_started_at"], int)
        assert 3600 - 60 <= token.expires_in <= 3600

    async def test_kiosk_token_is_not_an_access_token(
        self, db_session: AsyncSession, nursery: Nurseries
    ):
        token, _ = await kiosk_login(db_session, KIOSK_LOGIN_ID, KIOSK_PASSWORD)

        assert decode_token(token.token) is None

    async def test_unknown_login_id(self, db_session: AsyncSession, nursery: Nurseries):
        with pytest.raises(InvalidCredentials):
            await kiosk_login(db_session, "no-such-kiosk", KIOSK_PASSWORD)

    async def test_failures_report_remaining_attempts(
        self, db_session: AsyncSession, nursery: Nurseries
    ):
        errors = await _fail_login(db_session, 2)

        assert [e.detail["remaining_attempts"] for e in errors] == [4, 3]
        assert nursery.login_attempts == 2
        assert not nursery.is_locked

    async def test_fifth_failure_locks(self, db_session: AsyncSession, nursery: Nurseries):
        errors = await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)

        assert errors[-1].detail["locked_minutes"] == settings.KIOSK_LOCKOUT_MINUTES
        await db_session.refresh(nursery)
        assert nursery.is_locked
        assert nursery.login_attempts == settings.KIOSK_MAX_LOGIN_ATTEMPTS
        assert nursery.locked_until is not None
        lock_length = nursery.locked_until - utcnow()
        assert timedelta(minutes=29) < lock_length <= timedelta(minutes=30)

    async def test_locked_account_rejects_correct_password(
        self, db_session: AsyncSession, nursery: Nurseries
    ):
        await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)

        with pytest.raises(AccountLocked) as exc_info:
            await kiosk_login(db_session, KIOSK_LOGIN_ID, KIOSK_PASSWORD)

        assert exc_info.value.status_code == 423
        assert exc_info.value.detail["remaining_minutes"] == settings.KIOSK_LOCKOUT_MINUTES

    async def test_attempts_during_lock_not_counted(
        self, db_session: AsyncSession, nursery: Nurseries
    ):
        await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)
        locked_until = nursery.locked_until

        with pytest.raises(AccountLocked):
            await kiosk_login(db_session, KIOSK_LOGIN_ID, "wrong-password")

        await db_session.refresh(nursery)
        assert nursery.login_attempts == settings.KIOSK_MAX_LOGIN_ATTEMPTS
        assert nursery.locked_until == locked_until

    async def test_lapsed_lock_cleared_on_next_attempt(
        self, db_session: AsyncSession, nursery: Nurseries
    ):
        await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)
        nursery.locked_until = utcnow() - timedelta(seconds=1)
        await db_session.commit()

        # A wrong password after the lapse starts a fresh count
        errors = await _fail_login(db_session, 1)

        assert errors[0].detail["remaining_attempts"] == settings.KIOSK_MAX_LOGIN_ATTEMPTS - 1
        await db_session.refresh(nursery)
        assert not nursery.is_locked
        assert nursery.locked_until is None
        assert nursery.login_attempts == 1

    async def test_success_resets_attempts(self, db_session: AsyncSession, nursery: Nurseries):
        await _fail_login(db_session, 3)

        await kiosk_login(db_session, KIOSK_LOGIN_ID, KIOSK_PASSWORD)

        await db_session.refresh(nursery)
        assert nursery.login_attempts == 0


@pytest.mark.unit
class TestKioskHeartbeat:
    def test_renews_token(self):
        started = int(datetime.now(UTC).timestamp()) - 3600
        token = _kiosk_token(started)

        renewed = kiosk_heartbeat(token)

        claims = decode_token(renewed.token, expected_type=TokenType.KIOSK)
        assert claims is not None
        assert claims["session_started_at"] == started
        assert claims["nursery_id"] == "1"

    def test_accepts_expired_token(self):
        started = int(datetime.now(UTC).timestamp()) - 7200
        token = _kiosk_token(started, expires_delta=timedelta(minutes=-5))

        renewed = kiosk_heartbeat(token)

        assert renewed.expires_in > 0

    def test_session_ceiling(self):
        started = int(datetime.now(UTC).timestamp()) - (settings.KIOSK_MAX_SESSION_HOURS * 3600 + 60)
        token = _kiosk_token(started)

        with pytest.raises(InvalidToken) as exc_info:
            kiosk_heartbeat(token)

        assert "log in again" in exc_info.value.detail["message"]

    def test_rejects_access_token(self):
        token = create_access_token("10", UserRole.GUARDIAN).token

        with pytest.raises(InvalidToken):
            kiosk_heartbeat(token)

    def test_rejects_token_without_session_start(self):
        token = create_access_token(
            "1",
            UserRole.KIOSK,
            {"nursery_id": "1", "nursery_name": "Sakura Nursery"},
            token_type=TokenType.KIOSK,
        ).token

        with pytest.raises(InvalidToken):
            kiosk_heartbeat(token)

    def test_rejects_forged_token(self):
        token = _kiosk_token(int(datetime.now(UTC).timestamp()))

        with pytest.raises(InvalidToken):
            kiosk_heartbeat(token[:-4] + "AAAA")


@pytest.mark.unit
class TestKioskAdministration:
    async def test_lock_status_unlocked(self, db_session: AsyncSession, nursery: Nurseries):
        await _fail_login(db_session, 2)

        status = await get_kiosk_lock_status(db_session, 1)

        assert not status.is_locked
        assert status.login_attempts == 2
        assert status.remaining_attempts == 3
        assert status.locked_until is None

    async def test_lock_status_locked(self, db_session: AsyncSession, nursery: Nurseries):
        await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)

        status = await get_kiosk_lock_status(db_session, 1)

        assert status.is_locked
        assert status.remaining_attempts == 0
        assert status.remaining_minutes == settings.KIOSK_LOCKOUT_MINUTES

    async def test_lock_status_does_not_write(self, db_session: AsyncSession, nursery: Nurseries):
        await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)
        nursery.locked_until = utcnow() - timedelta(seconds=1)
        await db_session.commit()

        status = await get_kiosk_lock_status(db_session, 1)

        assert not status.is_locked
        assert status.remaining_attempts == settings.KIOSK_MAX_LOGIN_ATTEMPTS
        await db_session.refresh(nursery)
        assert nursery.is_locked

    async def test_unlock(self, db_session: AsyncSession, nursery: Nurseries):
        await _fail_login(db_session, settings.KIOSK_MAX_LOGIN_ATTEMPTS)

        await unlock_kiosk(db_session, 1)

        token, _ = await kiosk_login(db_session, KIOSK_LOGIN_ID, KIOSK_PASSWORD)
        assert token.token

    async def test_unknown_nursery(self, db_session: AsyncSession):
        with pytest.raises(NotFound):
            await get_kiosk_lock_status(db_session, 999)

    async def test_change_password(self, db_session: AsyncSession, nursery: Nurseries):
        await change_kiosk_password(db_session, 1, KIOSK_PASSWORD, "new-kiosk-pass")

        await db_session.refresh(nursery)
        assert verify_password("new-kiosk-pass", nursery.password_hash)

    async def test_change_password_requires_current(
        self, db_session: AsyncSession, nursery: Nurseries
    ):
        with pytest.raises(InvalidCredentials):
            await change_kiosk_password(db_session, 1, "wrong-password", "new-kiosk-pass")

        await db_session.refresh(nursery)
        assert verify_password(KIOSK_PASSWORD, nursery.password_hash)

    async def test_set_password(self, db_session: AsyncSession, nursery: Nurseries):
        await set_kiosk_password(db_session, 1, "reset-kiosk-pass")

        await db_session.refresh(nursery)
        assert verify_password("reset-kiosk-pass", nursery.password_hash)
