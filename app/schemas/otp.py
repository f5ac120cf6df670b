"""Pydantic schemas for OTP send, resend and verification flows."""

from pydantic import BaseModel, EmailStr, Field


class OTPRequest(BaseModel):
    """Payload used to request a (new) OTP for a specific email."""

    email: EmailStr
    name: str | None = Field(default=None, max_length=100)


class OTPVerify(BaseModel):
    """Payload used when submitting a received OTP code for validation."""

    email: EmailStr
    otp: str = Field(min_length=1, max_length=10)


class OTPIssued(BaseModel):
    email: EmailStr
    expires_in: int
    email_sent: bool = True
    delivery_error: str | None = None
