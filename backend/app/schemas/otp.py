"""Response schemas for the sign-in and session endpoints.

Field aliases keep the JSON shape the mobile clients already parse
(``expiresIn``, ``sessionToken``, ``isNewUser``, ``authProviders``).
"""

import uuid

from pydantic import BaseModel, ConfigDict, Field

from app.services.otp_service import IssueResult, VerifyResult, auth_providers
from app.services.otp_stores import UserIdentity

_RESPONSE_CONFIG = ConfigDict(extra="forbid", populate_by_name=True)


class UserProfile(BaseModel):
    """Public profile of the signed-in user."""

    model_config = _RESPONSE_CONFIG

    id: uuid.UUID
    username: str
    email: str | None = None
    full_name: str | None = None
    profile_picture_url: str | None = None
    subscription_status: str = "free"
    total_gigs: int = 0
    city: str | None = None
    auth_providers: list[str] = Field(default_factory=list, alias="authProviders")

    @classmethod
    def from_identity(cls, user: UserIdentity) -> "UserProfile":
        """Project a UserIdentity, computing the available sign-in methods."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            profile_picture_url=user.profile_picture_url,
            subscription_status=user.subscription_status,
            total_gigs=user.total_gigs,
            city=user.city,
            auth_providers=auth_providers(user),
        )


class OTPIssueResponse(BaseModel):
    """Body of POST /auth/otp/request and /auth/otp/resend.

    Same shape whether or not a code was actually sent.
    """

    model_config = _RESPONSE_CONFIG

    success: bool = True
    expires_in: int = Field(alias="expiresIn")

    @classmethod
    def from_result(cls, result: IssueResult) -> "OTPIssueResponse":
        return cls(success=True, expires_in=result.expires_in)


class OTPVerifyResponse(BaseModel):
    """Body of POST /auth/otp/verify, /auth/signup, and /auth/signin."""

    model_config = _RESPONSE_CONFIG

    session_token: str = Field(alias="sessionToken")
    user: UserProfile
    is_new_user: bool = Field(alias="isNewUser")

    @classmethod
    def from_result(cls, result: VerifyResult) -> "OTPVerifyResponse":
        return cls(
            session_token=result.session_token,
            user=UserProfile.from_identity(result.user),
            is_new_user=result.is_new_user,
        )


class SessionStatusResponse(BaseModel):
    """Body of GET /auth/session."""

    model_config = _RESPONSE_CONFIG

    valid: bool
    user: UserProfile | None = None


class AuthProvidersResponse(BaseModel):
    """Body of GET /auth/providers."""

    model_config = _RESPONSE_CONFIG

    auth_providers: list[str] = Field(alias="authProviders")


class SuccessResponse(BaseModel):
    """Generic acknowledgement."""

    model_config = _RESPONSE_CONFIG

    success: bool = True
