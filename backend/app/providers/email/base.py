"""Email provider interface and message rendering.

Defines the EmailProvider contract used by the OTP flow and the
verification-code message every provider sends.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.providers.config import ProviderConfig

OTP_EMAIL_SUBJECT = "Your Gigz verification code"

_OTP_EMAIL_HTML = """\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, \
sans-serif; padding: 20px; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #333; font-size: 24px; margin-bottom: 20px;">\
Your verification code</h1>
  <div style="background: #f5f5f5; border-radius: 8px; padding: 24px; \
text-align: center; margin-bottom: 20px;">
    <span style="font-size: 36px; font-weight: bold; letter-spacing: 8px; \
color: #111;">{code}</span>
  </div>
  <p style="color: #666; font-size: 14px; line-height: 1.5;">
    Enter this code to sign in to Gigz. This code will expire in \
{minutes} minutes.
  </p>
  <p style="color: #999; font-size: 12px; margin-top: 30px;">
    If you didn't request this code, you can safely ignore this email.
  </p>
</body>
</html>
"""

_OTP_EMAIL_TEXT = (
    "Your Gigz verification code is: {code}\n\n"
    "This code will expire in {minutes} minutes.\n\n"
    "If you didn't request this code, you can safely ignore this email."
)


@dataclass(frozen=True)
class OTPEmail:
    """Rendered verification-code e-mail.

    Attributes:
        to: Recipient address.
        subject: Subject line.
        html: HTML body.
        text: Plain-text body.
    """

    to: str
    subject: str
    html: str
    text: str


def render_otp_email(to_email: str, code: str, expiry_minutes: int) -> OTPEmail:
    """Build the verification-code e-mail for a recipient.

    Args:
        to_email: Recipient address.
        code: 6-digit plaintext code.
        expiry_minutes: Code lifetime shown to the user.

    Returns:
        OTPEmail ready to hand to a provider.
    """
    return OTPEmail(
        to=to_email,
        subject=OTP_EMAIL_SUBJECT,
        html=_OTP_EMAIL_HTML.format(code=code, minutes=expiry_minutes),
        text=_OTP_EMAIL_TEXT.format(code=code, minutes=expiry_minutes),
    )


class EmailProvider(ABC):
    """Abstract base class for email providers.

    WHY ABSTRACT CLASS:
    - The OTP flow depends on send_otp() only, not on a vendor SDK
    - Tests swap in MockEmailProvider
    """

    def __init__(self, config: "ProviderConfig") -> None:
        """Initialize with provider configuration.

        Args:
            config: Provider configuration including API key and sender.
        """
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., 'resend', 'mock')."""
        ...

    @abstractmethod
    async def send_otp(self, *, to_email: str, code: str) -> None:
        """Deliver a verification code.

        Args:
            to_email: Recipient address (normalized).
            code: 6-digit plaintext code.

        Raises:
            ProviderError: If the provider rejected or failed the send.
        """
        ...
