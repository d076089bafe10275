"""OTP sign-in endpoints.

Passwordless sign-in with a 6-digit code sent by e-mail.

Endpoints:
- POST /auth/otp/request: send a code
- POST /auth/otp/resend: send a fresh code (stricter limit)
- POST /auth/otp/verify: exchange a code for a session token

Request and resend always answer {success: true, expiresIn: 600} for a
well-formed e-mail, whether or not a code was sent (enumeration defense).
Issuance limits are enforced by the OTP service against the database;
verify is additionally throttled per client IP with slowapi.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import OTPServiceDep
from app.core.config import settings
from app.core.otp_crypto import MAX_EMAIL_LENGTH
from app.core.rate_limiting import client_ip, limiter
from app.core.responses import DataResponse
from app.schemas.otp import OTPIssueResponse, OTPVerifyResponse

router = APIRouter()

_MAX_CODE_LENGTH = 32


# ===================================================================
# Request models
# ===================================================================


class OTPEmailRequest(BaseModel):
    """Request body for POST /auth/otp/request and /auth/otp/resend.

    Presence and format are checked by the service so the error messages
    match across transports.
    """

    model_config = ConfigDict(extra="forbid")

    email: str | None = Field(default=None, max_length=MAX_EMAIL_LENGTH)


class OTPVerifyRequest(BaseModel):
    """Request body for POST /auth/otp/verify."""

    model_config = ConfigDict(extra="forbid")

    email: str | None = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    code: str | None = Field(default=None, max_length=_MAX_CODE_LENGTH)


# ===================================================================
# POST /auth/otp/request
# ===================================================================


@router.post("/otp/request")
async def request_otp(
    request: Request,
    body: OTPEmailRequest,
    service: OTPServiceDep,
) -> DataResponse[OTPIssueResponse]:
    """Send a sign-in code to an e-mail address.

    Limits: 5 per e-mail per hour, 10 per client IP per hour. Exceeding
    either still returns success but sends nothing.
    """
    result = await service.request_otp(body.email, client_ip=client_ip(request))
    return DataResponse(data=OTPIssueResponse.from_result(result))


# ===================================================================
# POST /auth/otp/resend
# ===================================================================


@router.post("/otp/resend")
async def resend_otp(
    request: Request,
    body: OTPEmailRequest,
    service: OTPServiceDep,
) -> DataResponse[OTPIssueResponse]:
    """Send a fresh code, replacing the previous one.

    Limits: 3 per e-mail per 10 minutes, then the request limits.
    """
    result = await service.resend_otp(body.email, client_ip=client_ip(request))
    return DataResponse(data=OTPIssueResponse.from_result(result))


# ===================================================================
# POST /auth/otp/verify
# ===================================================================


@router.post("/otp/verify")
@limiter.limit(settings.rate_limit_verify)
async def verify_otp(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: OTPVerifyRequest,
    service: OTPServiceDep,
) -> DataResponse[OTPVerifyResponse]:
    """Exchange a code for a session token.

    Creates the account on first sign-in. Every failure to accept the
    code is a 404 with the same message.
    """
    result = await service.verify_otp(body.email, body.code)
    return DataResponse(data=OTPVerifyResponse.from_result(result))
