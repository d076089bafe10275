"""Session endpoints.

Endpoints:
- GET /auth/session: check a session token
- GET /auth/providers: sign-in methods of the current user
- POST /auth/logout: revoke the current session token

The token travels in the X-Session-Token header (SESSION_HEADER_NAME).
"""

from fastapi import APIRouter

from app.api.deps import CurrentUser, OTPServiceDep, SessionToken
from app.core.responses import DataResponse
from app.schemas.otp import (
    AuthProvidersResponse,
    SessionStatusResponse,
    SuccessResponse,
    UserProfile,
)
from app.services.otp_service import auth_providers

router = APIRouter()


@router.get("/session")
async def validate_session(
    service: OTPServiceDep,
    token: SessionToken,
) -> DataResponse[SessionStatusResponse]:
    """Report whether a session token is valid.

    Never 401s: a missing, unknown, or expired token yields
    ``{"valid": false}``.
    """
    user = await service.validate_session(token)
    if user is None:
        return DataResponse(data=SessionStatusResponse(valid=False))
    return DataResponse(
        data=SessionStatusResponse(valid=True, user=UserProfile.from_identity(user))
    )


@router.get("/providers")
async def get_auth_providers(user: CurrentUser) -> DataResponse[AuthProvidersResponse]:
    """List the sign-in methods available to the current user."""
    return DataResponse(data=AuthProvidersResponse(auth_providers=auth_providers(user)))


@router.post("/logout")
async def logout(
    service: OTPServiceDep,
    token: SessionToken,
) -> DataResponse[SuccessResponse]:
    """Revoke the session token. Idempotent."""
    await service.logout(token)
    return DataResponse(data=SuccessResponse())
