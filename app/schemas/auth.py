"""Pydantic schemas for authentication-related payloads and responses."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.db.models.user import UserRole


class UserBase(BaseModel):
    """Base fields shared across user-related schemas."""

    email: EmailStr


class UserCreate(UserBase):
    """Payload for registration requests."""

    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=6, max_length=72)
    role: UserRole = UserRole.STUDENT


class UserLogin(UserBase):
    """Payload for login attempts."""

    password: str


class UserResponse(UserBase):
    """Public profile of a user record."""

    id: int
    name: str
    role: UserRole
    is_active: bool
    is_verified: bool
    last_login: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Registered(BaseModel):
    user_id: int
    email: EmailStr
    name: str
    role: UserRole
    email_sent: bool = True


class LoginData(BaseModel):
    """Bearer token plus the profile it was issued for."""

    token: str
    token_type: str = "bearer"
    user: UserResponse


class VerifiedData(BaseModel):
    email: EmailStr
    token: str | None = None
    user: UserResponse | None = None


class WelcomeRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
