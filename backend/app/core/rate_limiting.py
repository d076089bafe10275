"""Per-IP throttling of the credential-checking endpoints (slowapi).

A 6-digit code has a million values and five tries; this caps how fast
one client can cycle through fresh codes, and how fast it can guess
passwords at /auth/signin. It is coarse, in-process throttling. The
persisted per-email and per-IP issuance limits in
app.services.otp_rate_limiter are what gate code delivery.

Usage in routers:
    @router.post("/otp/verify")
    @limiter.limit(settings.rate_limit_verify)
    async def verify_otp(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.responses import ErrorDetail, ErrorResponse

_DEFAULT_RETRY_AFTER = "60"


def client_ip(request: Request) -> str | None:
    """Peer address used for IP rate limits, or None if the transport has none."""
    if request.client is None:
        return None
    return get_remote_address(request)


# In-memory counters: one process. Point RATELIMIT_STORAGE_URL at Redis
# when running several workers.
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def _retry_after(detail: object) -> str:
    """Trailing number of a slowapi detail string ("60" or "60s"), else 60."""
    try:
        candidate = str(detail.split()[-1])
        int(candidate.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        return _DEFAULT_RETRY_AFTER
    return candidate


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Answer 429 RATE_LIMITED in the error envelope with a Retry-After header.

    Args:
        _request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status.
    """
    body = ErrorResponse(
        error=ErrorDetail(
            code="RATE_LIMITED",
            message=f"Rate limit exceeded: {exc.detail}",
        )
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(),
        headers={"Retry-After": _retry_after(exc.detail)},
    )
