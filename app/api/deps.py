"""Dependency providers used by FastAPI endpoints.

These helpers expose database sessions, Redis clients, and composed services
through FastAPI's dependency injection system so route handlers remain thin.
"""

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InvalidToken
from app.db.models.user import User
from app.db.session import get_session
from app.services.accounts import AccountRepository
from app.services.auth import AuthService
from app.services.otp import Clock, OTPService, get_redis_client, utcnow
from app.services.otp_store import DatabaseOTPStore, InMemoryOTPStore, OTPStore, RedisOTPStore
from app.services.rate_limit import MemoryCounter, RedisCounter, RequestThrottle

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async SQLAlchemy session tied to the shared engine."""

    async for session in get_session():
        yield session


def get_redis() -> Redis:
    """Return a singleton Redis client used for OTP storage."""
    return get_redis_client()


@lru_cache
def _memory_otp_store() -> InMemoryOTPStore:
    return InMemoryOTPStore()


def get_otp_store(session: AsyncSession = Depends(get_db_session)) -> OTPStore:
    """Pick the OTP backend named by ``OTP_BACKEND``."""
    if settings.OTP_BACKEND == "memory":
        return _memory_otp_store()
    if settings.OTP_BACKEND == "database":
        return DatabaseOTPStore(session)
    return RedisOTPStore(get_redis(), retention_seconds=settings.OTP_RETENTION_SECONDS)


def get_clock() -> Clock:
    return utcnow


def get_otp_service(
    store: OTPStore = Depends(get_otp_store),
    clock: Clock = Depends(get_clock),
) -> OTPService:
    return OTPService(store, clock=clock)


@lru_cache
def _memory_throttle() -> RequestThrottle:
    return RequestThrottle(MemoryCounter())


def get_throttle() -> RequestThrottle:
    if settings.OTP_BACKEND == "redis":
        return RequestThrottle(RedisCounter(get_redis()))
    return _memory_throttle()


async def get_auth_service(
    session: AsyncSession = Depends(get_db_session),
    otp_service: OTPService = Depends(get_otp_service),
) -> AsyncGenerator[AuthService, None]:
    """Assemble AuthService with its account repository and OTP service.

    Dependencies:
    - `AsyncSession` from `get_db_session` for user persistence.
    - `OTPService` from `get_otp_service` for OTP issuance/validation.
    """

    yield AuthService(accounts=AccountRepository(session), otp_service=otp_service)


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Resolve the bearer token to an account or fail with 401."""
    if not token:
        raise InvalidToken("Not authenticated.")
    return await auth_service.get_current_user(token)
