"""E-mail and password endpoints.

Endpoints:
- POST /auth/signup: create an account with a password (201)
- POST /auth/signin: exchange e-mail and password for a session token
- POST /auth/password: set a new password for the signed-in user

Sign-up and sign-in answer with the same body as OTP verification.
Password rules (8 characters, at most 72 bytes) are enforced by the
service so the messages match across transports.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import PasswordAuthDep, SessionToken
from app.core.config import settings
from app.core.otp_crypto import MAX_EMAIL_LENGTH
from app.core.rate_limiting import limiter
from app.core.responses import DataResponse
from app.schemas.otp import OTPVerifyResponse, SuccessResponse

router = APIRouter()

# Longer than any acceptable password; the service reports the real limit
_MAX_PASSWORD_LENGTH = 128
_MAX_USERNAME_LENGTH = 128


# ===================================================================
# Request models
# ===================================================================


class SignUpRequest(BaseModel):
    """Request body for POST /auth/signup."""

    model_config = ConfigDict(extra="forbid")

    email: str | None = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD_LENGTH)
    username: str | None = Field(default=None, max_length=_MAX_USERNAME_LENGTH)


class SignInRequest(BaseModel):
    """Request body for POST /auth/signin."""

    model_config = ConfigDict(extra="forbid")

    email: str | None = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD_LENGTH)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/password."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    current_password: str | None = Field(
        default=None, max_length=_MAX_PASSWORD_LENGTH, alias="currentPassword"
    )
    new_password: str = Field(
        min_length=1, max_length=_MAX_PASSWORD_LENGTH, alias="newPassword"
    )


# ===================================================================
# POST /auth/signup
# ===================================================================


@router.post("/signup", status_code=201)
@limiter.limit(settings.rate_limit_signup)
async def sign_up(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: SignUpRequest,
    service: PasswordAuthDep,
) -> DataResponse[OTPVerifyResponse]:
    """Create a password account and sign it in.

    409 EMAIL_TAKEN or USERNAME_TAKEN when either is already in use.
    """
    result = await service.sign_up(body.email, body.password, username=body.username)
    return DataResponse(data=OTPVerifyResponse.from_result(result))


# ===================================================================
# POST /auth/signin
# ===================================================================


@router.post("/signin")
@limiter.limit(settings.rate_limit_signin)
async def sign_in(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: SignInRequest,
    service: PasswordAuthDep,
) -> DataResponse[OTPVerifyResponse]:
    """Exchange e-mail and password for a session token.

    Unknown e-mail and wrong password are the same 401.
    """
    result = await service.sign_in(body.email, body.password)
    return DataResponse(data=OTPVerifyResponse.from_result(result))


# ===================================================================
# POST /auth/password
# ===================================================================


@router.post("/password")
async def change_password(
    body: ChangePasswordRequest,
    service: PasswordAuthDep,
    token: SessionToken,
) -> DataResponse[SuccessResponse]:
    """Set a new password and sign out every other session.

    The current password may be omitted when the session came from an
    OTP sign-in.
    """
    await service.change_password(
        token, body.new_password, current_password=body.current_password
    )
    return DataResponse(data=SuccessResponse())
