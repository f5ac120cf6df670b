from app.db.models.otp import OTPCode
from app.db.models.user import User, UserRole

__all__ = ["OTPCode", "User", "UserRole"]
