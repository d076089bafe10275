"""Response envelope models.

Successful calls answer ``{"data": ...}``; failures answer
``{"error": {"code", "message", "details"}}``. Clients branch on which
key is present.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Success envelope wrapping one payload model.

    Usage:
        return DataResponse(data=OTPIssueResponse.from_result(result))
    """

    data: T


class ErrorDetail(BaseModel):
    """Body of the error envelope.

    Attributes:
        code: Machine-readable code ("INVALID_ARGUMENT", "NOT_FOUND", ...).
        message: Human-readable message, safe to show to the user.
        details: Field-level errors for request validation failures.
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
