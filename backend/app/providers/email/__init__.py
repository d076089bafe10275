"""Email provider module.

EmailProvider interface and adapters for verification-code delivery.
"""

from app.providers.email.base import (
    OTP_EMAIL_SUBJECT,
    EmailProvider,
    OTPEmail,
    render_otp_email,
)
from app.providers.email.mock_adapter import MockEmailProvider
from app.providers.email.resend_adapter import ResendEmailProvider

__all__ = [
    # Base types
    "OTP_EMAIL_SUBJECT",
    "EmailProvider",
    "OTPEmail",
    "render_otp_email",
    # Adapters
    "MockEmailProvider",
    "ResendEmailProvider",
]
