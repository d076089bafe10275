"""FastAPI application entry point for the Gigz auth API.

Wires the OTP, password, and session routers under /api/v1, the error envelope
handlers, per-IP throttling, security headers, and the health probes.

Run with: uvicorn app.main:app
"""

from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.deps import DbSession
from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.errors import APIError
from app.core.rate_limiting import limiter, rate_limit_exceeded_handler
from app.core.responses import ErrorDetail, ErrorResponse

logger = structlog.get_logger()

# Sent on every response. The API never serves HTML, so nothing may be
# framed, sniffed, or loaded cross-origin.
_SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Embedder-Policy": "require-corp",
    "Cross-Origin-Resource-Policy": "same-origin",
}

_HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the static security headers to every response.

    Session tokens travel in API responses, so /api/ responses are also
    marked uncacheable. HSTS is only sent in production, where TLS is
    terminated by the reverse proxy.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        response.headers.update(_SECURITY_HEADERS)

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = _HSTS

        return response


# =============================================================================
# Exception handlers
# =============================================================================


def _error_response(
    status_code: int, code: str, message: str, details: Any = None
) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, details=details)
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError in the error envelope with its own status code."""
    return _error_response(exc.status_code, exc.code, exc.message, exc.details)


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request-body validation failures as 400 INVALID_ARGUMENT.

    Uses the same code the OTP service raises for malformed e-mails and
    codes, so clients see one error shape for bad input.

    Args:
        _request: The incoming request.
        exc: The RequestValidationError from Pydantic.

    Returns:
        JSONResponse with field-level details (loc, msg, type).
    """
    details = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return _error_response(
        400, "INVALID_ARGUMENT", "Request validation failed", details
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the exception, answer 500 with no internals."""
    logger.exception("Unhandled exception", exc_info=exc, path=request.url.path)
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope handlers, most specific first."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)


# =============================================================================
# Health probes (outside the versioned API)
# =============================================================================

health_router = APIRouter(tags=["health"])


@health_router.get("/health")
def health_check() -> dict:
    """Liveness probe: the process is up."""
    return {"status": "healthy"}


@health_router.get("/health/ready")
async def readiness_check(db: DbSession) -> JSONResponse:
    """Readiness probe: 200 when the database answers ``SELECT 1``, else 503.

    Returns:
        {"status": "ready" | "unavailable", "checks": {"database": bool}}
    """
    try:
        await db.execute(text("SELECT 1"))
        database_ok = True
    except (SQLAlchemyError, OSError):
        logger.warning("Readiness check failed", exc_info=True)
        await db.rollback()
        database_ok = False

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "ready" if database_ok else "unavailable",
            "checks": {"database": database_ok},
        },
    )


def create_app() -> FastAPI:
    """Build the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Gigz Auth API",
        version="1.0.0",
        description="E-mail sign-in for the Gigz concert app",
    )

    # Starlette runs the last-added middleware first; CORS must see
    # preflight requests before anything else.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "X-Request-ID",
            settings.session_header_name,
        ],
    )

    register_exception_handlers(app)

    # Per-IP throttling of code verification and password sign-in
    app.state.limiter = limiter

    app.include_router(v1_router, prefix="/api/v1")
    app.include_router(health_router)

    return app


app = create_app()
