"""Retention cleanup for OTP and session state.

Three jobs, meant to run periodically (see scripts/purge_otp_state.py):
- Rate-limit counters whose window opened more than
  RATE_LIMIT_RETENTION_HOURS ago (every window has long closed by then)
- Expired OTP codes nobody tried to verify
- Expired sessions
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import APIError
from app.repositories.otp_code_repository import OTPCodeRepository
from app.repositories.rate_limit_repository import RateLimitRepository
from app.repositories.session_repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OTPCleanupResult:
    """Aggregate result of all OTP cleanup jobs.

    Attributes:
        stale_rate_limits: Rate-limit counters deleted.
        expired_codes: Expired OTP codes deleted.
        expired_sessions: Expired sessions deleted.
    """

    stale_rate_limits: int
    expired_codes: int
    expired_sessions: int


class CleanupError(APIError):
    """Raised when a cleanup operation fails at the database level."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="CLEANUP_ERROR",
            message=message,
            status_code=500,
        )


async def purge_stale_rate_limits(
    db: AsyncSession,
    *,
    retention: timedelta | None = None,
    now: datetime | None = None,
) -> int:
    """Delete rate-limit counters older than the retention period.

    Args:
        db: Database session.
        retention: Age past which counters are deleted. Defaults to
            settings.rate_limit_retention_hours.
        now: Reference time (defaults to the current UTC time).

    Returns:
        Number of counters deleted.

    Raises:
        CleanupError: If the database operation fails.
    """
    if retention is None:
        retention = timedelta(hours=settings.rate_limit_retention_hours)
    cutoff = (now or datetime.now(UTC)) - retention
    try:
        return await RateLimitRepository.delete_started_before(db, cutoff)
    except SQLAlchemyError as exc:
        logger.error("Rate limit cleanup failed: %s", exc)
        raise CleanupError("Rate limit cleanup failed") from exc


async def purge_expired_codes(db: AsyncSession) -> int:
    """Delete OTP codes past their expiry.

    Args:
        db: Database session.

    Returns:
        Number of codes deleted.

    Raises:
        CleanupError: If the database operation fails.
    """
    try:
        return await OTPCodeRepository.delete_expired(db)
    except SQLAlchemyError as exc:
        logger.error("Expired OTP code cleanup failed: %s", exc)
        raise CleanupError("Expired OTP code cleanup failed") from exc


async def purge_expired_sessions(db: AsyncSession) -> int:
    """Delete sessions past their expiry.

    Raises:
        CleanupError: If the database operation fails.
    """
    try:
        return await SessionRepository.delete_expired(db)
    except SQLAlchemyError as exc:
        logger.error("Expired session cleanup failed: %s", exc)
        raise CleanupError("Expired session cleanup failed") from exc


async def run_otp_cleanup(db: AsyncSession) -> OTPCleanupResult:
    """Run all three cleanup jobs and commit.

    Args:
        db: Database session.

    Returns:
        OTPCleanupResult with counts from all cleanup categories.

    Raises:
        CleanupError: If any database operation fails (nothing is committed).
    """
    stale_rate_limits = await purge_stale_rate_limits(db)
    expired_codes = await purge_expired_codes(db)
    expired_sessions = await purge_expired_sessions(db)

    try:
        await db.commit()
    except SQLAlchemyError as exc:
        logger.error("OTP cleanup commit failed: %s", exc)
        raise CleanupError("OTP cleanup commit failed") from exc

    result = OTPCleanupResult(
        stale_rate_limits=stale_rate_limits,
        expired_codes=expired_codes,
        expired_sessions=expired_sessions,
    )
    logger.info(
        "OTP cleanup complete: %d rate limits, %d codes, %d sessions",
        result.stale_rate_limits,
        result.expired_codes,
        result.expired_sessions,
    )
    return result
