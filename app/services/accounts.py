"""Account persistence: lookups, creation, verification flag and password checks."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import DUMMY_PASSWORD_HASH, get_password_hash, verify_password
from app.db.models.user import User, UserRole
from app.services.otp_store import normalize_email


class AccountRepository:
    """Thin wrapper around the ``users`` table used by the auth flows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_email(self, email: str) -> User | None:
        return await self.session.scalar(select(User).where(User.email == normalize_email(email)))

    async def get(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def create(self, *, name: str, email: str, password: str, role: UserRole = UserRole.STUDENT) -> User:
        user = User(
            name=name,
            email=normalize_email(email),
            hashed_password=get_password_hash(password),
            role=role,
            is_active=False,
            is_verified=False,
        )
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def set_verified(self, user: User) -> User:
        """Flip the verification flag; a verified account is left untouched."""
        if user.is_verified:
            return user
        user.is_verified = True
        user.is_active = True
        await self.session.commit()
        await self.session.refresh(user)
        return user

    @staticmethod
    def check_password(user: User | None, password: str) -> bool:
        """Compare against the stored hash, or a dummy one when there is no account."""
        if user is None:
            verify_password(password, DUMMY_PASSWORD_HASH)
            return False
        return verify_password(password, user.hashed_password)

    async def record_login(self, user: User) -> None:
        user.last_login = datetime.now(timezone.utc)
        await self.session.commit()
