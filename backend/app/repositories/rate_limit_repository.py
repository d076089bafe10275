"""Repository for OTPRateLimit operations.

Fixed-window counters per (identifier_hash, kind). Increments are
conditional on the counter still being below the limit, so concurrent
requests cannot overshoot it.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.rate_limit import OTPRateLimit


class RateLimitRepository:
    """Stateless repository for OTPRateLimit table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def find_active(
        db: AsyncSession,
        *,
        identifier_hash: str,
        kind: str,
        window_opened_after: datetime,
    ) -> OTPRateLimit | None:
        """Find the newest counter whose window is still open.

        Args:
            db: Async database session.
            identifier_hash: SHA-256 hash of the e-mail or IP.
            kind: Limit kind ("email", "ip", "resend").
            window_opened_after: Windows starting at or before this are closed.

        Returns:
            The most recent open OTPRateLimit, or None.
        """
        stmt = (
            select(OTPRateLimit)
            .where(
                OTPRateLimit.identifier_hash == identifier_hash,
                OTPRateLimit.kind == kind,
                OTPRateLimit.window_start > window_opened_after,
            )
            .order_by(OTPRateLimit.window_start.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        identifier_hash: str,
        kind: str,
        window_start: datetime,
    ) -> OTPRateLimit:
        """Open a new window with a count of 1.

        Args:
            db: Async database session.
            identifier_hash: SHA-256 hash of the e-mail or IP.
            kind: Limit kind ("email", "ip", "resend").
            window_start: When the window opens.

        Returns:
            Created OTPRateLimit.
        """
        record = OTPRateLimit(
            identifier_hash=identifier_hash,
            kind=kind,
            count=1,
            window_start=window_start,
        )
        db.add(record)
        await db.flush()
        await db.refresh(record)
        return record

    @staticmethod
    async def increment_if_below(
        db: AsyncSession,
        *,
        record_id: uuid.UUID,
        limit: int,
    ) -> bool:
        """Add one to a counter unless it has reached the limit.

        Args:
            db: Async database session.
            record_id: Counter row to increment.
            limit: Maximum count for the window.

        Returns:
            True if the counter was incremented, False if it was already
            at (or above) the limit.
        """
        stmt = (
            update(OTPRateLimit)
            .where(
                OTPRateLimit.id == record_id,
                OTPRateLimit.count < limit,
            )
            .values(count=OTPRateLimit.count + 1)
        )
        result = await db.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    @staticmethod
    async def delete_started_before(db: AsyncSession, cutoff: datetime) -> int:
        """Delete counters whose window opened before the cutoff.

        Args:
            db: Async database session.
            cutoff: Rows with window_start earlier than this are removed.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(OTPRateLimit).where(OTPRateLimit.window_start < cutoff)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
