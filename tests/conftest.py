"""
Aarambh auth service - test configuration and fixtures
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional, Tuple

# Settings are read once at import time, so the environment must be in place first.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["OTP_BACKEND"] = "memory"
os.environ["EMAIL_DELIVERY"] = "console"
os.environ["OTP_RESEND_COOLDOWN_SECONDS"] = "0"
os.environ["LOG_JSON"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db import models  # noqa: F401
from app.db.base import Base
from app.db.session import async_session_factory, engine
from app.main import app
from app.services.accounts import AccountRepository
from app.services.auth import AuthService
from app.services.email import EmailResult
from app.services.otp import OTPService
from app.services.otp_store import InMemoryOTPStore
from app.services.rate_limit import MemoryCounter, RequestThrottle


class FrozenClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMailer:
    """Collects outgoing OTP mails instead of talking to SMTP."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Optional[str]]] = []
        self.fail = False

    async def __call__(self, email: str, code: str, display_name: Optional[str] = None) -> EmailResult:
        if self.fail:
            return EmailResult(success=False, error="SMTP settings are incomplete.")
        self.sent.append((email, code, display_name))
        return EmailResult(success=True, message_id=f"<{len(self.sent)}@test>")

    def last_code(self, email: str) -> str:
        for to, code, _ in reversed(self.sent):
            if to == email:
                return code
        raise AssertionError(f"no mail sent to {email}")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryOTPStore:
    return InMemoryOTPStore()


@pytest.fixture
def otp_service(store: InMemoryOTPStore, clock: FrozenClock) -> OTPService:
    return OTPService(store, length=6, expire_minutes=10, max_attempts=5, clock=clock)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # drop the pooled connection so the next test, on its own event loop, opens a fresh one
    await engine.dispose()


@pytest.fixture
def auth_service(db_session: AsyncSession, otp_service: OTPService, mailer: FakeMailer) -> AuthService:
    return AuthService(accounts=AccountRepository(db_session), otp_service=otp_service, otp_sender=mailer)


@pytest.fixture
def throttle() -> RequestThrottle:
    return RequestThrottle(MemoryCounter(), request_limit=100, verify_limit=100, resend_cooldown=0)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    auth_service: AuthService,
    throttle: RequestThrottle,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the same session, store, clock and mailer as the services."""

    async def override_get_db_session():
        yield db_session

    async def override_get_auth_service():
        yield auth_service

    app.dependency_overrides[deps.get_db_session] = override_get_db_session
    app.dependency_overrides[deps.get_auth_service] = override_get_auth_service
    app.dependency_overrides[deps.get_throttle] = lambda: throttle

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def verified_user(auth_service: AuthService, mailer: FakeMailer):
    """A registered account that has completed the OTP flow; password is 'secret123'."""
    from app.schemas.auth import UserCreate

    user, _ = await auth_service.register(UserCreate(name="Asha", email="asha@example.com", password="secret123"))
    await auth_service.verify_otp(user.email, mailer.last_code(user.email))
    return user
