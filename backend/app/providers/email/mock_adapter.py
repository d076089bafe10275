"""Mock email provider for testing and local development."""

from app.providers.config import ProviderConfig
from app.providers.email.base import EmailProvider, OTPEmail, render_otp_email
from app.providers.errors import ProviderError


class MockEmailProvider(EmailProvider):
    """Records messages instead of sending them.

    Attributes:
        sent: Every rendered message, in send order.
        codes: Most recent plaintext code per recipient.
        fail_with: If set, send_otp() raises this instead of recording.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        fail_with: ProviderError | None = None,
    ) -> None:
        super().__init__(config or ProviderConfig(email_provider="mock"))
        self.sent: list[OTPEmail] = []
        self.codes: dict[str, str] = {}
        self.fail_with = fail_with

    @property
    def provider_name(self) -> str:
        """Return 'mock' for testing."""
        return "mock"

    async def send_otp(self, *, to_email: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(
            render_otp_email(to_email, code, self.config.otp_expiry_minutes)
        )
        self.codes[to_email] = code

    def last_code_for(self, to_email: str) -> str | None:
        """Return the most recent code sent to ``to_email``."""
        return self.codes.get(to_email)
