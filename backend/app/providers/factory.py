"""Provider factory functions.

Singleton pattern for the email provider instance.
"""

from app.core.config import settings
from app.providers.config import ProviderConfig
from app.providers.email.base import EmailProvider
from app.providers.email.mock_adapter import MockEmailProvider
from app.providers.email.resend_adapter import ResendEmailProvider

_email_provider: EmailProvider | None = None


def get_email_provider(config: ProviderConfig | None = None) -> EmailProvider:
    """Get or create the email provider singleton.

    WHY OPTIONAL CONFIG:
    - First call sets the config (app startup or tests)
    - Subsequent calls reuse it

    Args:
        config: Optional provider configuration. If None and no provider
            exists, loads from application settings.

    Returns:
        EmailProvider instance.

    Raises:
        ValueError: If the configured provider is unknown.
    """
    global _email_provider

    if _email_provider is None:
        if config is None:
            config = ProviderConfig.from_settings(settings)

        if config.email_provider == "resend":
            _email_provider = ResendEmailProvider(config)
        elif config.email_provider == "mock":
            _email_provider = MockEmailProvider(config)
        else:
            raise ValueError(f"Unknown email provider: {config.email_provider}")

    return _email_provider


def reset_providers() -> None:
    """Reset provider singletons.

    Used in tests to ensure isolation between test cases.
    """
    global _email_provider
    _email_provider = None
