"""Repository for OTPCode operations.

Single-use e-mail codes stored as hashes, keyed by the hashed e-mail.
Consumption is a conditional delete so two concurrent verifications of
the same code cannot both succeed.
"""

from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.otp_code import OTPCode


class OTPCodeRepository:
    """Stateless repository for OTPCode table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def get(db: AsyncSession, *, email_hash: str) -> OTPCode | None:
        """Look up the live code for an e-mail hash.

        Args:
            db: Async database session.
            email_hash: SHA-256 hash of the normalized e-mail.

        Returns:
            OTPCode if present, None otherwise.
        """
        stmt = select(OTPCode).where(OTPCode.email_hash == email_hash)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        email_hash: str,
        code_hash: str,
        expires_at: datetime,
    ) -> None:
        """Store a code, replacing whatever is there for the e-mail hash.

        Concurrent issuers for the same address resolve last-writer-wins.

        Args:
            db: Async database session.
            email_hash: SHA-256 hash of the normalized e-mail.
            code_hash: SHA-256 hash of the 6-digit code.
            expires_at: Code expiry timestamp.
        """
        stmt = insert(OTPCode).values(
            email_hash=email_hash,
            code_hash=code_hash,
            expires_at=expires_at,
            attempts=0,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OTPCode.email_hash],
            set_={
                "code_hash": stmt.excluded.code_hash,
                "expires_at": stmt.excluded.expires_at,
                "attempts": 0,
                "created_at": stmt.excluded.created_at,
            },
        )
        await db.execute(stmt)

    @staticmethod
    async def delete(db: AsyncSession, *, email_hash: str) -> None:
        """Delete the code for an e-mail hash, if any."""
        stmt = delete(OTPCode).where(OTPCode.email_hash == email_hash)
        await db.execute(stmt)

    @staticmethod
    async def consume(
        db: AsyncSession,
        *,
        email_hash: str,
        code_hash: str,
    ) -> bool:
        """Delete the code only if it still matches.

        Args:
            db: Async database session.
            email_hash: SHA-256 hash of the normalized e-mail.
            code_hash: SHA-256 hash of the submitted code.

        Returns:
            True if this call removed the row, False if another caller
            (or a reissue) got there first.
        """
        stmt = delete(OTPCode).where(
            OTPCode.email_hash == email_hash,
            OTPCode.code_hash == code_hash,
        )
        result = await db.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    @staticmethod
    async def increment_attempts(
        db: AsyncSession,
        *,
        email_hash: str,
    ) -> int | None:
        """Atomically add one wrong attempt.

        Returns:
            The new attempt count, or None if the row no longer exists.
        """
        stmt = (
            update(OTPCode)
            .where(OTPCode.email_hash == email_hash)
            .values(attempts=OTPCode.attempts + 1)
            .returning(OTPCode.attempts)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_expired(db: AsyncSession) -> int:
        """Delete all expired codes (periodic cleanup).

        Args:
            db: Async database session.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(OTPCode).where(OTPCode.expires_at < datetime.now(UTC))
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
