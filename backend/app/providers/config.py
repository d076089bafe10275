"""Email provider configuration.

Built from the application Settings so provider selection, credentials,
and retry policy come from one place (environment / .env).
"""

from dataclasses import dataclass

from app.core.config import Settings

_RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class ProviderConfig:
    """Email provider configuration.

    Attributes:
        email_provider: Which provider to use ("resend", "mock").
        resend_api_key: Resend API key. Empty means delivery is skipped.
        resend_api_url: Resend send endpoint.
        email_from: Sender address ("Name <addr>").
        request_timeout_seconds: Per-request HTTP timeout.
        max_retries: Max retry attempts for transient errors.
        retry_base_delay_ms: Base delay for exponential backoff.
        retry_max_delay_ms: Max delay cap for exponential backoff.
        otp_expiry_minutes: Shown to the recipient in the message body.
    """

    email_provider: str = "resend"
    resend_api_key: str = ""
    resend_api_url: str = _RESEND_API_URL
    email_from: str = "Gigz <noreply@gigz.app>"
    request_timeout_seconds: float = 10.0

    # Retry policy
    max_retries: int = 2
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 5000

    otp_expiry_minutes: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderConfig":
        """Load configuration from application settings.

        Args:
            settings: Application settings.

        Returns:
            ProviderConfig with values taken from settings.
        """
        return cls(
            email_provider=settings.email_provider,
            resend_api_key=settings.resend_api_key.get_secret_value(),
            email_from=settings.email_from,
            max_retries=settings.email_max_retries,
            otp_expiry_minutes=settings.otp_expiry_minutes,
        )
