"""SQLAlchemy ORM models for the Gigz auth service.

All models are exported from this module for convenient imports:
    from app.models import User, Session, OTPCode, ...

Models are organized by concern:
- user.py: User
- account.py: Account (external provider links)
- session.py: Session (opaque bearer sessions)
- otp_code.py: OTPCode (pending e-mail codes)
- rate_limit.py: OTPRateLimit (issuance counters)
"""

from app.models.account import Account
from app.models.base import Base, TimestampMixin
from app.models.otp_code import OTPCode
from app.models.rate_limit import OTPRateLimit
from app.models.session import Session
from app.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Identity
    "User",
    "Account",
    "Session",
    # OTP
    "OTPCode",
    "OTPRateLimit",
]
