"""Pydantic request/response schemas for API endpoints."""

from app.schemas.otp import (
    AuthProvidersResponse,
    OTPIssueResponse,
    OTPVerifyResponse,
    SessionStatusResponse,
    SuccessResponse,
    UserProfile,
)

__all__ = [
    # OTP
    "OTPIssueResponse",
    "OTPVerifyResponse",
    "UserProfile",
    # Session
    "SessionStatusResponse",
    "AuthProvidersResponse",
    "SuccessResponse",
]
