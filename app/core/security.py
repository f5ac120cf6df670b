"""Password hashing and signed session tokens."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import InvalidToken, SigningKeyError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_SECRET_KEY_LENGTH = 16

# Compared against when the account does not exist, so an unknown email costs
# the same bcrypt round as a wrong password.
DUMMY_PASSWORD_HASH = pwd_context.hash("aarambh-dummy-password")


class TokenPayload(BaseModel):
    """Decoded claims of an access token."""

    sub: str
    iat: datetime
    exp: datetime
    type: str = "access"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def ensure_signing_key() -> None:
    """Fail fast when the signing secret cannot produce trustworthy tokens."""
    if not settings.SECRET_KEY or len(settings.SECRET_KEY) < MIN_SECRET_KEY_LENGTH:
        raise SigningKeyError(
            f"SECRET_KEY must be set to at least {MIN_SECRET_KEY_LENGTH} characters; refusing to start."
        )
    if not settings.ALGORITHM.startswith("HS"):
        raise SigningKeyError(f"Unsupported signing algorithm {settings.ALGORITHM!r}; expected an HMAC algorithm.")


def create_access_token(
    subject: str | int,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Sign a bearer token binding the account id with issue and expiry times."""
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode: Dict[str, Any] = dict(extra_claims or {})
    to_encode.update({"sub": str(subject), "iat": issued_at, "exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise InvalidToken("Session has expired. Please log in again.")
    except JWTError:
        raise InvalidToken()

    if claims.get("type") != "access" or not claims.get("sub"):
        raise InvalidToken()
    return TokenPayload(**claims)
