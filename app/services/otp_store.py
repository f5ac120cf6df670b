"""Storage backends for pending OTP entries.

The issuer and verifier in ``app.services.otp`` only talk to the ``OTPStore``
interface, so the same state machine runs on Redis, on the SQL database or on
a plain dict in development and tests.

Concurrent verifies of one entry never read-modify-write it: attempts and
consumption go through ``claim_attempt`` and ``consume``, which every backend
applies atomically to the issuance they were read from.
"""

import math
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field
from redis.asyncio import Redis
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.otp import OTPCode


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _issue_id() -> str:
    return secrets.token_hex(8)


class PendingOTP(BaseModel):
    """A code issued for one email address, with expiry and attempt bookkeeping."""

    email: str
    code: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    attempts: int = 0
    # tells a superseded issuance apart from the one that replaced it
    issue_id: str = Field(default_factory=_issue_id)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_live(self, now: datetime) -> bool:
        return not self.consumed and not self.is_expired(now)

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, math.ceil((self.expires_at - now).total_seconds()))


class OTPStore(ABC):
    """Keyed by normalized email; at most one entry per key."""

    @abstractmethod
    async def put(self, entry: PendingOTP) -> None:
        """Write ``entry``, replacing whatever was stored for the same email."""

    @abstractmethod
    async def get(self, email: str) -> Optional[PendingOTP]:
        ...

    @abstractmethod
    async def delete(self, email: str) -> None:
        ...

    @abstractmethod
    async def claim_attempt(self, entry: PendingOTP) -> Optional[int]:
        """Count one verification attempt against ``entry``.

        Returns the attempt total including this one, or ``None`` when the
        stored entry is no longer the issuance ``entry`` was read from.
        """

    @abstractmethod
    async def consume(self, entry: PendingOTP) -> bool:
        """Mark ``entry`` consumed; ``False`` if it was consumed or replaced first."""


class InMemoryOTPStore(OTPStore):
    """Process-local store; each instance owns its own entries.

    Nothing here awaits between reading and writing an entry, so the event
    loop already serializes ``claim_attempt`` and ``consume``.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PendingOTP] = {}

    def _current(self, entry: PendingOTP) -> Optional[PendingOTP]:
        current = self._entries.get(normalize_email(entry.email))
        if current is None or current.issue_id != entry.issue_id:
            return None
        return current

    async def put(self, entry: PendingOTP) -> None:
        self._entries[normalize_email(entry.email)] = entry.model_copy()

    async def get(self, email: str) -> Optional[PendingOTP]:
        entry = self._entries.get(normalize_email(email))
        return entry.model_copy() if entry is not None else None

    async def delete(self, email: str) -> None:
        self._entries.pop(normalize_email(email), None)

    async def claim_attempt(self, entry: PendingOTP) -> Optional[int]:
        current = self._current(entry)
        if current is None:
            return None
        current.attempts += 1
        return current.attempts

    async def consume(self, entry: PendingOTP) -> bool:
        current = self._current(entry)
        if current is None or current.consumed:
            return False
        current.consumed = True
        return True

    def __len__(self) -> int:
        return len(self._entries)


def _otp_key(email: str) -> str:
    """Generate the Redis key that scopes an OTP to a user's email."""
    return f"otp:{normalize_email(email)}"


class RedisOTPStore(OTPStore):
    """JSON entries in Redis.

    The key outlives the code's own expiry by ``retention_seconds`` so that a
    late submission is reported as expired rather than as never issued.
    Attempts and consumption live in per-issuance side keys updated with
    ``INCR`` and ``SET NX``, so concurrent verifies cannot overwrite each other.
    """

    def __init__(self, redis_client: Redis, retention_seconds: int = 3600):
        self.redis = redis_client
        self.retention_seconds = retention_seconds

    def _ttl(self, entry: PendingOTP) -> int:
        validity = math.ceil((entry.expires_at - entry.issued_at).total_seconds())
        return max(validity, 0) + self.retention_seconds or 1

    @staticmethod
    def _attempts_key(entry: PendingOTP) -> str:
        return f"{_otp_key(entry.email)}:{entry.issue_id}:attempts"

    @staticmethod
    def _used_key(entry: PendingOTP) -> str:
        return f"{_otp_key(entry.email)}:{entry.issue_id}:used"

    async def _stored(self, email: str) -> Optional[PendingOTP]:
        raw = await self.redis.get(_otp_key(email))
        if raw is None:
            return None
        return PendingOTP.model_validate_json(raw)

    async def put(self, entry: PendingOTP) -> None:
        await self.redis.set(_otp_key(entry.email), entry.model_dump_json(), ex=self._ttl(entry))

    async def get(self, email: str) -> Optional[PendingOTP]:
        entry = await self._stored(email)
        if entry is None:
            return None
        attempts, used = await self.redis.mget(self._attempts_key(entry), self._used_key(entry))
        if attempts is not None:
            entry.attempts += int(attempts)
        entry.consumed = entry.consumed or used is not None
        return entry

    async def delete(self, email: str) -> None:
        await self.redis.delete(_otp_key(email))

    async def _is_current(self, entry: PendingOTP) -> Optional[PendingOTP]:
        stored = await self._stored(entry.email)
        if stored is None or stored.issue_id != entry.issue_id:
            return None
        return stored

    async def claim_attempt(self, entry: PendingOTP) -> Optional[int]:
        stored = await self._is_current(entry)
        if stored is None:
            return None
        key = self._attempts_key(entry)
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, self._ttl(entry))
        return stored.attempts + count

    async def consume(self, entry: PendingOTP) -> bool:
        stored = await self._is_current(entry)
        if stored is None or stored.consumed:
            return False
        claimed = await self.redis.set(self._used_key(entry), "1", ex=self._ttl(entry), nx=True)
        return bool(claimed)


_UPSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class DatabaseOTPStore(OTPStore):
    """Entries kept in the ``otp_codes`` table next to the account records.

    Writes are single statements: an ``INSERT .. ON CONFLICT`` upsert for
    issuance and conditional ``UPDATE``s for attempts and consumption.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _row(self, email: str) -> Optional[OTPCode]:
        stmt = (
            select(OTPCode)
            .where(OTPCode.email == normalize_email(email))
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        try:
            return _UPSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"DatabaseOTPStore does not support the {dialect} dialect") from None

    async def put(self, entry: PendingOTP) -> None:
        values = {
            "email": normalize_email(entry.email),
            "issue_id": entry.issue_id,
            "code": entry.code,
            "issued_at": entry.issued_at,
            "expires_at": entry.expires_at,
            "is_used": entry.consumed,
            "attempts": entry.attempts,
        }
        stmt = self._insert()(OTPCode).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[OTPCode.email],
            set_={name: stmt.excluded[name] for name in values if name != "email"},
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def get(self, email: str) -> Optional[PendingOTP]:
        row = await self._row(email)
        if row is None:
            return None
        return PendingOTP(
            email=row.email,
            code=row.code,
            issued_at=_as_utc(row.issued_at),
            expires_at=_as_utc(row.expires_at),
            consumed=row.is_used,
            attempts=row.attempts,
            issue_id=row.issue_id,
        )

    async def delete(self, email: str) -> None:
        row = await self._row(email)
        if row is not None:
            await self.session.delete(row)
            await self.session.commit()

    def _same_issue(self, entry: PendingOTP):
        return (OTPCode.email == normalize_email(entry.email)) & (OTPCode.issue_id == entry.issue_id)

    async def claim_attempt(self, entry: PendingOTP) -> Optional[int]:
        stmt = (
            update(OTPCode)
            .where(self._same_issue(entry))
            .values(attempts=OTPCode.attempts + 1)
            .returning(OTPCode.attempts)
            .execution_options(synchronize_session=False)
        )
        attempts = (await self.session.execute(stmt)).scalar_one_or_none()
        await self.session.commit()
        return attempts

    async def consume(self, entry: PendingOTP) -> bool:
        stmt = (
            update(OTPCode)
            .where(self._same_issue(entry), OTPCode.is_used.is_(False))
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1
