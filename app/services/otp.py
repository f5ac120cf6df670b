"""OTP issuance and verification on top of a pluggable ``OTPStore``."""

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email
from redis.asyncio import Redis

from app.core.config import settings
from app.core.errors import (
    InvalidEmail,
    OTPAlreadyConsumed,
    OTPAttemptsExceeded,
    OTPExpired,
    OTPMismatch,
    OTPNotFound,
    OTPStillActive,
)
from app.services.otp_store import OTPStore, PendingOTP, normalize_email

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_redis_client: Optional[Redis] = None


def get_redis_client() -> Redis:
    """Return a lazily initialized Redis client shared across the service."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared Redis client; invoked during application shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp(length: int = settings.OTP_LENGTH) -> str:
    """Create a zero-padded numeric OTP with configurable length."""
    upper_bound = 10 ** length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


def check_email(email: str) -> str:
    """Return the normalized address or raise ``InvalidEmail``."""
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise InvalidEmail()
    return normalize_email(email)


@dataclass
class IssuedOTP:
    email: str
    code: str
    expires_at: datetime
    expires_in: int


class OTPService:
    """High-level API for issuing, validating, and invalidating OTP codes."""

    def __init__(
        self,
        store: OTPStore,
        *,
        length: int = settings.OTP_LENGTH,
        expire_minutes: int = settings.OTP_EXPIRE_MINUTES,
        max_attempts: int = settings.OTP_MAX_ATTEMPTS,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.length = length
        self.expire_minutes = expire_minutes
        self.max_attempts = max_attempts
        self.clock = clock

    async def issue(self, email: str, resend: bool = False) -> IssuedOTP:
        """Mint a new code for ``email`` and store it, replacing any older entry.

        A plain send is refused while a live code exists so the same inbox is
        not flooded; ``resend=True`` always supersedes the existing entry.
        """
        email = check_email(email)
        now = self.clock()

        if not resend:
            existing = await self.store.get(email)
            if existing is not None and existing.is_live(now):
                raise OTPStillActive(retry_after=max(existing.remaining_seconds(now), 1))

        entry = PendingOTP(
            email=email,
            code=generate_otp(self.length),
            issued_at=now,
            expires_at=now + timedelta(minutes=self.expire_minutes),
        )
        await self.store.put(entry)
        logger.info("otp issued", extra={"email": email, "resend": resend})
        return IssuedOTP(
            email=email,
            code=entry.code,
            expires_at=entry.expires_at,
            expires_in=entry.remaining_seconds(now),
        )

    async def verify(self, email: str, code: str) -> PendingOTP:
        """Check ``code`` against the stored entry and consume it on a match.

        Every call claims one attempt from the store before comparing, so
        parallel guesses cannot slip past the lockout, and only the verify
        whose ``consume`` lands first succeeds.
        """
        email = normalize_email(email)
        entry = await self.store.get(email)
        if entry is None:
            raise OTPNotFound()
        if entry.consumed:
            raise OTPAlreadyConsumed()

        now = self.clock()
        if entry.is_expired(now):
            raise OTPExpired()
        if self._locked(entry.attempts):
            raise OTPAttemptsExceeded()

        attempt = await self.store.claim_attempt(entry)
        if attempt is None:
            await self._raced(entry)

        if not hmac.compare_digest(entry.code.encode(), code.strip().encode()):
            logger.info("otp mismatch", extra={"email": email, "attempts": attempt})
            if self._locked(attempt):
                raise OTPAttemptsExceeded()
            raise OTPMismatch()
        if self._locked(attempt - 1):
            raise OTPAttemptsExceeded()

        if not await self.store.consume(entry):
            await self._raced(entry)

        entry.consumed = True
        entry.attempts = attempt
        logger.info("otp verified", extra={"email": email})
        return entry

    def _locked(self, attempts: int) -> bool:
        return bool(self.max_attempts) and attempts >= self.max_attempts

    async def _raced(self, entry: PendingOTP) -> None:
        """Raise for an entry another request consumed, replaced or removed mid-verify."""
        current = await self.store.get(entry.email)
        if current is None:
            raise OTPNotFound()
        if current.issue_id != entry.issue_id:
            raise OTPMismatch()
        raise OTPAlreadyConsumed()

    async def invalidate(self, email: str) -> None:
        """Remove an OTP without validation."""
        await self.store.delete(email)
