"""Domain errors for the authentication flow.

Every error carries a stable machine-readable ``code`` and an HTTP status so
the exception handler in ``app.main`` can render it into the response
envelope without the services knowing about HTTP responses.

Usage:
    from app.core.errors import OTPExpired

    if entry.is_expired(now):
        raise OTPExpired()
"""

from typing import Any, Dict, Optional

from fastapi import status


class AuthError(Exception):
    """Base exception for all errors surfaced by the auth flow."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "AuthError"
    message: str = "Authentication error."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.data = data
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "error": self.code}
        if self.data is not None:
            body["data"] = self.data
        return body


# ============================================
# OTP errors
# ============================================

class InvalidEmail(AuthError):
    code = "InvalidEmail"
    message = "Invalid email format."


class OTPNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"
    message = "No verification code found for this email. Please request a new one."


class OTPExpired(AuthError):
    code = "Expired"
    message = "Verification code has expired. Please request a new one."


class OTPMismatch(AuthError):
    code = "Mismatch"
    message = "Invalid verification code."


class OTPAlreadyConsumed(AuthError):
    code = "AlreadyConsumed"
    message = "Verification code has already been used."


class OTPAttemptsExceeded(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "TooManyAttempts"
    message = "Too many incorrect attempts. Please request a new code."


class OTPStillActive(AuthError):
    """A live code exists and the caller asked for a send, not a resend."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RateLimited"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            f"Please wait {retry_after} seconds before requesting a new OTP.",
            data={"expires_in": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class RateLimited(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RateLimited"
    message = "Too many requests. Please try again shortly."

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message, data={"retry_after": retry_after}, headers={"Retry-After": str(retry_after)})


# ============================================
# Account / credential errors
# ============================================

class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "InvalidCredentials"
    message = "Invalid email or password."


class RequiresVerification(AuthError):
    """Not a failure as such: tells the client to route the user into the OTP flow."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "RequiresVerification"
    message = "Please verify your email first. Check your inbox for the verification code."

    def __init__(self, email: str):
        super().__init__(data={"requires_verification": True, "email": email})


class AccountExists(AuthError):
    code = "AccountExists"
    message = "User with this email already exists."


class AccountNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"
    message = "User not found."


class InvalidToken(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "InvalidToken"
    message = "Could not validate credentials."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class SigningKeyError(RuntimeError):
    """Raised at startup when the token signing key is unusable."""
