"""Shared dependencies for API endpoints.

Wires the OTP and password services to their PostgreSQL stores and the
configured email provider, and resolves the opaque session token sent by
clients.

WHY DEPENDENCY INJECTION:
- Tests swap the whole service for one built on in-memory fakes
  (app.dependency_overrides)
- Endpoints stay free of construction details
"""

from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import UnauthorizedError
from app.providers.factory import get_email_provider
from app.services.otp_persistence import (
    SqlIdentityStore,
    SqlOTPCodeStore,
    SqlRateLimitStore,
)
from app.services.otp_service import OTPPolicy, OTPService
from app.services.otp_stores import UserIdentity
from app.services.password_auth import PasswordAuthService

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_otp_service(db: DbSession) -> OTPService:
    """Build the OTP service for one request.

    Args:
        db: Database session (injected).

    Returns:
        OTPService backed by SQL stores and the email provider singleton.
    """
    return OTPService(
        codes=SqlOTPCodeStore(db),
        rate_limits=SqlRateLimitStore(db),
        identities=SqlIdentityStore(db),
        email_provider=get_email_provider(),
        policy=OTPPolicy.from_settings(settings),
    )


def get_password_auth_service(db: DbSession) -> PasswordAuthService:
    """Build the password sign-in service for one request."""
    return PasswordAuthService(
        identities=SqlIdentityStore(db),
        session_ttl=timedelta(days=settings.session_expiry_days),
    )


def get_session_token(request: Request) -> str | None:
    """Read the opaque session token from the session header.

    Returns:
        The token, or None when the header is absent or blank.
    """
    token = request.headers.get(settings.session_header_name, "").strip()
    return token or None


OTPServiceDep = Annotated[OTPService, Depends(get_otp_service)]
PasswordAuthDep = Annotated[PasswordAuthService, Depends(get_password_auth_service)]
SessionToken = Annotated[str | None, Depends(get_session_token)]


async def get_current_user(
    service: OTPServiceDep,
    token: SessionToken,
) -> UserIdentity:
    """Resolve the session token to a user or reject the request.

    Security: the 401 message is the same for a missing, unknown, or
    expired token.

    Raises:
        UnauthorizedError: No valid session.
    """
    user = await service.validate_session(token)
    if user is None:
        raise UnauthorizedError()
    return user


# Reusable type aliases for dependency injection
CurrentUser = Annotated[UserIdentity, Depends(get_current_user)]
