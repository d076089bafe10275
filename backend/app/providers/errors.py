"""Email provider error taxonomy.

Adapters map HTTP status codes and transport failures to these classes so
the OTP flow can log delivery problems without knowing which provider
is configured.

WHY SEPARATE ERROR CLASSES:
- Retry helper only retries what can succeed on a second try
- Misconfiguration (bad API key) is distinguishable in logs from outages
"""


__all__ = [
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "InvalidRecipientError",
    "TransientError",
]


class ProviderError(Exception):
    """Base class for all email provider errors.

    The OTP issuance path catches this (and anything unexpected) and logs
    it; delivery failures never reach the HTTP client.
    """

    pass


class RateLimitError(ProviderError):
    """Provider rejected the send with HTTP 429.

    WHY SEPARATE FROM TRANSIENT:
    - May carry a retry_after_seconds hint from the Retry-After header
    """

    def __init__(self, message: str, retry_after_seconds: float | None = None):
        """Initialize RateLimitError.

        Args:
            message: Error description from the provider.
            retry_after_seconds: Optional hint from provider on when to retry.
        """
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(ProviderError):
    """Invalid or revoked API key (HTTP 401/403).

    WHY NOT RETRYABLE:
    - Requires operator intervention (new API key)
    """

    pass


class InvalidRecipientError(ProviderError):
    """Provider refused the message itself (HTTP 4xx other than auth/429).

    Typically an address the provider considers undeliverable or a sender
    domain that is not verified. Not retryable.
    """

    pass


class TransientError(ProviderError):
    """Temporary failure (network, timeout, 5xx).

    Safe to retry with exponential backoff.
    """

    pass
