"""Repository for Session CRUD operations.

Sessions are looked up by the SHA-256 hash of the opaque token; the plain
token never reaches the database.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.session import Session


class SessionRepository:
    """Stateless repository for Session table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        token_hash: str,
        auth_provider: str,
        expires_at: datetime,
    ) -> Session:
        """Store a new session.

        Args:
            db: Async database session.
            user_id: Owner of the session.
            token_hash: SHA-256 hash of the plain session token.
            auth_provider: Sign-in method that created the session.
            expires_at: Session expiry timestamp.

        Returns:
            Created Session with database-generated fields populated.
        """
        session = Session(
            user_id=user_id,
            token_hash=token_hash,
            auth_provider=auth_provider,
            expires_at=expires_at,
        )
        db.add(session)
        await db.flush()
        await db.refresh(session)
        return session

    @staticmethod
    async def get_active(
        db: AsyncSession,
        *,
        token_hash: str,
    ) -> Session | None:
        """Look up an unexpired session by token hash.

        Args:
            db: Async database session.
            token_hash: SHA-256 hash of the plain session token.

        Returns:
            Session if found and not expired, None otherwise.
        """
        stmt = select(Session).where(
            Session.token_hash == token_hash,
            Session.expires_at > datetime.now(UTC),
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_by_token_hash(db: AsyncSession, *, token_hash: str) -> bool:
        """Delete a session (logout).

        Returns:
            True if a session was deleted.
        """
        stmt = delete(Session).where(Session.token_hash == token_hash)
        result = await db.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]

    @staticmethod
    async def delete_for_user_except(
        db: AsyncSession, *, user_id: uuid.UUID, keep_token_hash: str
    ) -> int:
        """Delete all of a user's sessions but one (after a password change).

        Args:
            db: Async database session.
            user_id: Owner of the sessions.
            keep_token_hash: Hash of the session that stays valid.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(
            Session.user_id == user_id,
            Session.token_hash != keep_token_hash,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_expired(db: AsyncSession) -> int:
        """Delete all expired sessions (periodic cleanup).

        Args:
            db: Async database session.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(Session.expires_at < datetime.now(UTC))
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
