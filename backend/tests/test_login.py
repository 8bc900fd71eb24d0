"""Login guard thresholds and the sign-in flow built on it."""

import datetime
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from aftersales.auth.errors import AccountLocked, InvalidCredentials, LoginThrottled
from aftersales.auth.hashing import hash_password
from aftersales.auth.login_guard import LoginGuard
from aftersales.auth.tokens import TokenService
from aftersales.models.login_attempt import LoginAttempt
from aftersales.models.user import ROLE_SERVICE_ADVISOR, SessionRecord, User
from aftersales.services.login import login, logout, logout_all

UTC = datetime.timezone.utc
T0 = datetime.datetime(2026, 10, 19, 8, 0, tzinfo=UTC)
SECRET = "login-test-secret-cccccccccccccccccccccccccccccccc"
EMAIL = "advisor@dealer.example"
PASSWORD = "correct horse battery staple"


class Clock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(T0)


@pytest.fixture
def guard(clock):
    return LoginGuard(clock=clock)


@pytest.fixture
def tokens():
    return TokenService(SECRET, "aftersales-api", "aftersales-frontend", 3600)


@pytest_asyncio.fixture
async def user(session):
    user = User(
        email=EMAIL,
        password_hash=hash_password(PASSWORD),
        full_name="Service Advisor",
        role=ROLE_SERVICE_ADVISOR,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    return user


async def _fail(guard, session, n, email=EMAIL, ip="10.0.0.1"):
    for _ in range(n):
        await guard.record(session, email, ip, "pytest", success=False)


class TestLoginGuard:
    @pytest.mark.asyncio
    async def test_allows_below_threshold(self, session, guard):
        await _fail(guard, session, 4)
        assert await guard.check_allowed(session, EMAIL, "10.0.0.1")

    @pytest.mark.asyncio
    async def test_throttles_at_five_failures_in_window(self, session, guard):
        await _fail(guard, session, 5)
        assert not await guard.check_allowed(session, EMAIL, "10.0.0.1")

    @pytest.mark.asyncio
    async def test_throttle_counts_by_ip_too(self, session, guard):
        await _fail(guard, session, 5, email="someone@else.example", ip="10.0.0.9")
        assert not await guard.check_allowed(session, EMAIL, "10.0.0.9")
        assert await guard.check_allowed(session, EMAIL, "10.0.0.1")

    @pytest.mark.asyncio
    async def test_failures_age_out_of_the_window(self, session, guard, clock):
        await _fail(guard, session, 5)
        clock.advance(minutes=16)
        assert await guard.check_allowed(session, EMAIL, "10.0.0.1")

    @pytest.mark.asyncio
    async def test_successes_do_not_count(self, session, guard):
        for _ in range(6):
            await guard.record(session, EMAIL, "10.0.0.1", None, success=True)
        assert await guard.check_allowed(session, EMAIL, "10.0.0.1")

    @pytest.mark.asyncio
    async def test_locks_after_ten_failures_in_an_hour(self, session, guard, clock, user):
        for _ in range(10):
            await _fail(guard, session, 1)
            clock.advance(minutes=5)
        assert await guard.is_locked(session, user.id)

    @pytest.mark.asyncio
    async def test_not_locked_below_ten(self, session, guard, user):
        await _fail(guard, session, 9)
        assert not await guard.is_locked(session, user.id)

    @pytest.mark.asyncio
    async def test_unknown_user_is_not_locked(self, session, guard):
        assert not await guard.is_locked(session, uuid.uuid4())


class TestLoginFlow:
    @pytest.mark.asyncio
    async def test_success(self, session, guard, tokens, user):
        result = await login(session, guard, tokens, EMAIL, PASSWORD, ip="10.0.0.1", user_agent="pytest")

        assert result.token_type == "Bearer"
        assert result.expires_in == 3600
        assert result.user.id == user.id
        assert result.user.last_login_at is not None
        assert tokens.verify(result.access_token).email == EMAIL

        record = await session.get(SessionRecord, result.session_id)
        assert record is not None
        assert record.user_id == user.id
        assert len(result.session_id) == 64

        attempts = (await session.execute(select(LoginAttempt))).scalars().all()
        assert [a.success for a in attempts] == [True]

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, session, guard, tokens, user):
        result = await login(session, guard, tokens, EMAIL.upper(), PASSWORD)
        assert result.user.id == user.id

    @pytest.mark.asyncio
    async def test_wrong_password_is_recorded(self, session, guard, tokens, user):
        with pytest.raises(InvalidCredentials):
            await login(session, guard, tokens, EMAIL, "wrong", ip="10.0.0.1")
        failures = await session.scalar(
            select(func.count()).select_from(LoginAttempt).where(LoginAttempt.success.is_(False))
        )
        assert failures == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, session, guard, tokens):
        with pytest.raises(InvalidCredentials):
            await login(session, guard, tokens, "ghost@dealer.example", PASSWORD)

    @pytest.mark.asyncio
    async def test_inactive_user(self, session, guard, tokens, user):
        user.is_active = False
        await session.commit()
        with pytest.raises(InvalidCredentials):
            await login(session, guard, tokens, EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_throttled_attempt_is_not_recorded(self, session, guard, tokens, user):
        await _fail(guard, session, 5)
        with pytest.raises(LoginThrottled):
            await login(session, guard, tokens, EMAIL, PASSWORD, ip="10.0.0.1")
        total = await session.scalar(select(func.count()).select_from(LoginAttempt))
        assert total == 5

    @pytest.mark.asyncio
    async def test_locked_account_refuses_correct_password(self, session, guard, tokens, clock, user):
        # spread failures so the 15-minute throttle does not fire first
        for _ in range(10):
            await _fail(guard, session, 1, ip=None)
            clock.advance(minutes=4)
        # only the failures from minutes 28-36 remain in the 15-minute window
        with pytest.raises(AccountLocked):
            await login(session, guard, tokens, EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_logout_and_logout_all(self, session, guard, tokens, user):
        first = await login(session, guard, tokens, EMAIL, PASSWORD)
        second = await login(session, guard, tokens, EMAIL, PASSWORD)

        assert await logout(session, user.id, first.session_id) is True
        assert await session.get(SessionRecord, first.session_id) is None
        assert await logout(session, user.id, first.session_id) is False

        assert await logout_all(session, user.id) == 1
        assert await session.get(SessionRecord, second.session_id) is not None
        assert await logout_all(session, user.id) == 0
