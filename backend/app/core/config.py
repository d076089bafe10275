"""Application configuration loaded from environment variables.

Settings for database, API, OTP authentication, sessions, and e-mail
delivery. Uses pydantic-settings for validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "gigz_dev_password"  # nosec B105


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "gigz"
    database_user: str = "gigz_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # Production: Set ALLOWED_ORIGINS to specific domain(s)
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # OTP authentication
    otp_expiry_minutes: int = 10
    otp_max_attempts: int = 5
    otp_rate_limit_email_per_hour: int = 5
    otp_rate_limit_ip_per_hour: int = 10
    otp_rate_limit_resend_per_10min: int = 3

    # Sessions
    # Clients send the opaque token back in this header
    session_expiry_days: int = 365
    session_header_name: str = "X-Session-Token"

    # Retention: rate limit rows older than this are purged by the cleanup job
    rate_limit_retention_hours: int = 24

    # Email
    email_provider: Literal["resend", "mock"] = "resend"
    email_from: str = "Gigz <noreply@gigz.app>"
    resend_api_key: SecretStr = SecretStr("")
    email_max_retries: int = 2

    # Endpoint throttling (per client IP, via slowapi)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_verify: str = "10/minute"
    rate_limit_signin: str = "5/15minute"
    rate_limit_signup: str = "3/hour"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security and OTP policy requirements.

        Checks:
        - OTP limits and TTLs must be positive (all environments)
        - CORS must not use wildcard origin (all environments)
        - Database password must not be the default in production
        - RESEND_API_KEY must be set in production when Resend is the provider
        """
        otp_limits = {
            "OTP_EXPIRY_MINUTES": self.otp_expiry_minutes,
            "OTP_MAX_ATTEMPTS": self.otp_max_attempts,
            "OTP_RATE_LIMIT_EMAIL_PER_HOUR": self.otp_rate_limit_email_per_hour,
            "OTP_RATE_LIMIT_IP_PER_HOUR": self.otp_rate_limit_ip_per_hour,
            "OTP_RATE_LIMIT_RESEND_PER_10MIN": self.otp_rate_limit_resend_per_10min,
            "SESSION_EXPIRY_DAYS": self.session_expiry_days,
        }
        for name, value in otp_limits.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Session endpoints must only be reachable from known origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if (
                self.email_provider == "resend"
                and not self.resend_api_key.get_secret_value()
            ):
                msg = (
                    "RESEND_API_KEY must be set in production when "
                    "EMAIL_PROVIDER=resend. Verification codes would never be sent."
                )
                raise ValueError(msg)

        return self


settings = Settings()
