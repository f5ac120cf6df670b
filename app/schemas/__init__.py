from app.schemas.auth import LoginData, Registered, UserCreate, UserLogin, UserResponse, VerifiedData, WelcomeRequest
from app.schemas.common import APIResponse
from app.schemas.otp import OTPIssued, OTPRequest, OTPVerify

__all__ = [
    "APIResponse",
    "LoginData",
    "OTPIssued",
    "OTPRequest",
    "OTPVerify",
    "Registered",
    "UserCreate",
    "UserLogin",
    "UserResponse",
    "VerifiedData",
    "WelcomeRequest",
]
