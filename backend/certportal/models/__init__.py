"""SQLAlchemy models for the portal auth subsystem."""
from certportal.models.base import Base
from certportal.models.csrf_session import CsrfSession
from certportal.models.otp import OtpRecord
from certportal.models.rate_limit import RateLimitCounter
from certportal.models.token_denylist import TokenDenylist
from certportal.models.user import Company, User, UserRole, UserStatus

__all__ = [
    "Base",
    "Company",
    "CsrfSession",
    "OtpRecord",
    "RateLimitCounter",
    "TokenDenylist",
    "User",
    "UserRole",
    "UserStatus",
]
