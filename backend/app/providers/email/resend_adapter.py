"""Resend email provider.

Sends verification codes with a plain HTTP POST to the Resend API (no SDK).
HTTP failures are classified into the provider error taxonomy and
transient ones retried via with_retries().
"""

import contextlib
import logging

import httpx

from app.providers.config import ProviderConfig
from app.providers.email.base import EmailProvider, render_otp_email
from app.providers.errors import (
    AuthenticationError,
    InvalidRecipientError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from app.providers.retry import with_retries

logger = logging.getLogger(__name__)


def _classify_resend_response(response: httpx.Response) -> ProviderError:
    """Map a non-2xx Resend response to the provider error taxonomy.

    Returns a ProviderError subclass instance (does not raise).
    """
    message = f"Resend returned HTTP {response.status_code}"

    if response.status_code in (401, 403):
        return AuthenticationError(message)

    if response.status_code == 429:
        retry_after = None
        retry_header = response.headers.get("retry-after")
        if retry_header is not None:
            with contextlib.suppress(ValueError):
                retry_after = float(retry_header)
        return RateLimitError(message, retry_after_seconds=retry_after)

    if response.status_code >= 500:
        return TransientError(message)

    return InvalidRecipientError(message)


class ResendEmailProvider(EmailProvider):
    """Email provider backed by the Resend HTTP API.

    Args:
        config: Provider configuration.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config)
        self._transport = transport

    @property
    def provider_name(self) -> str:
        """Return 'resend'."""
        return "resend"

    async def _post_once(self, payload: dict[str, str]) -> None:
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.config.request_timeout_seconds,
            ) as client:
                response = await client.post(
                    self.config.resend_api_url,
                    headers={
                        "Authorization": f"Bearer {self.config.resend_api_key}",
                    },
                    json=payload,
                )
        except httpx.TransportError as exc:
            raise TransientError(f"Resend request failed: {exc}") from exc

        if response.is_error:
            raise _classify_resend_response(response)

    async def send_otp(self, *, to_email: str, code: str) -> None:
        """Send the verification-code e-mail through Resend.

        Without an API key the send is skipped with a warning, so local
        development works without e-mail credentials.

        Raises:
            AuthenticationError: API key rejected.
            InvalidRecipientError: Message rejected (4xx).
            RateLimitError: Still throttled after retries.
            TransientError: Network or 5xx failure after retries.
        """
        if not self.config.resend_api_key:
            logger.warning("RESEND_API_KEY not configured, skipping OTP email send")
            return

        message = render_otp_email(to_email, code, self.config.otp_expiry_minutes)
        payload = {
            "from": self.config.email_from,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }

        await with_retries(
            lambda: self._post_once(payload),
            self.config,
            operation="otp_send",
        )
        logger.info("Verification email sent via Resend")
