"""Provider abstraction layer.

Exports:
    Error classes for provider error handling
    ProviderConfig for configuration
    Factory functions for provider instances
"""

from app.providers.config import ProviderConfig
from app.providers.errors import (
    AuthenticationError,
    InvalidRecipientError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from app.providers.factory import get_email_provider, reset_providers

__all__ = [
    # Config
    "ProviderConfig",
    # Errors
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "InvalidRecipientError",
    "TransientError",
    # Factory
    "get_email_provider",
    "reset_providers",
]
