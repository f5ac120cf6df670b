"""Authentication domain logic orchestrating accounts, OTP, email and JWT issuance."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.errors import AccountExists, AccountNotFound, InvalidCredentials, InvalidToken, RequiresVerification
from app.core.security import create_access_token, decode_access_token
from app.db.models.user import User
from app.schemas.auth import UserCreate
from app.services.accounts import AccountRepository
from app.services.email import EmailResult, send_otp_email, send_welcome_email
from app.services.otp import IssuedOTP, OTPService

logger = logging.getLogger(__name__)

OTPSender = Callable[[str, str, Optional[str]], Awaitable[EmailResult]]


@dataclass
class OTPDispatch:
    """An issued code together with what happened when we tried to mail it."""

    issued: IssuedOTP
    delivery: EmailResult


@dataclass
class LoginResult:
    token: str
    user: User


@dataclass
class VerificationResult:
    email: str
    user: Optional[User] = None
    token: Optional[str] = None


class AuthService:
    """High-level service used by API routes; holds the account store and OTP service."""

    def __init__(
        self,
        accounts: AccountRepository,
        otp_service: OTPService,
        otp_sender: OTPSender = send_otp_email,
    ):
        """Inject dependencies so the service can hit the DB, the OTP store and SMTP."""
        self.accounts = accounts
        self.otp_service = otp_service
        self.otp_sender = otp_sender

    def issue_session(self, user: User) -> str:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        return create_access_token(subject=user.id, expires_delta=expires_delta)

    async def _dispatch(self, email: str, name: Optional[str], resend: bool) -> OTPDispatch:
        issued = await self.otp_service.issue(email, resend=resend)
        delivery = await self.otp_sender(issued.email, issued.code, name)
        if not delivery.success:
            # the stored code stays valid; the client can retry through resend
            logger.warning("otp email not delivered", extra={"email": issued.email, "error": delivery.error})
        return OTPDispatch(issued=issued, delivery=delivery)

    async def register(self, payload: UserCreate) -> tuple[User, OTPDispatch]:
        """Create an unverified account and mail it a verification code."""

        if await self.accounts.find_by_email(payload.email):
            raise AccountExists()

        user = await self.accounts.create(
            name=payload.name, email=payload.email, password=payload.password, role=payload.role
        )
        dispatch = await self._dispatch(user.email, user.name, resend=True)
        logger.info("user registered", extra={"user_id": user.id})
        return user, dispatch

    async def send_otp(self, email: str, name: Optional[str] = None) -> OTPDispatch:
        """Issue a first code; refused while a live one is still pending."""
        return await self._dispatch(email, name, resend=False)

    async def resend_otp(self, email: str, name: Optional[str] = None) -> OTPDispatch:
        """Supersede any pending code with a fresh one."""
        if name is None:
            user = await self.accounts.find_by_email(email)
            name = user.name if user else None
        return await self._dispatch(email, name, resend=True)

    async def verify_otp(self, email: str, code: str) -> VerificationResult:
        """Validate a submitted code; a matching account gets verified and a session."""

        entry = await self.otp_service.verify(email, code)
        user = await self.accounts.find_by_email(entry.email)
        if user is None:
            return VerificationResult(email=entry.email)

        user = await self.accounts.set_verified(user)
        token = self.issue_session(user)
        await self.accounts.record_login(user)
        logger.info("account verified", extra={"user_id": user.id})
        return VerificationResult(email=entry.email, user=user, token=token)

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate by password; unverified accounts are routed to the OTP flow."""

        user = await self.accounts.find_by_email(email)
        if not self.accounts.check_password(user, password):
            raise InvalidCredentials()

        if not user.is_verified:
            raise RequiresVerification(user.email)

        token = self.issue_session(user)
        await self.accounts.record_login(user)
        return LoginResult(token=token, user=user)

    async def get_current_user(self, token: str) -> User:
        payload = decode_access_token(token)
        try:
            user_id = int(payload.sub)
        except ValueError:
            raise InvalidToken()
        user = await self.accounts.get(user_id)
        if user is None:
            raise AccountNotFound()
        return user

    async def send_welcome(self, email: str, name: str) -> EmailResult:
        return await send_welcome_email(email, name)
