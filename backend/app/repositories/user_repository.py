"""Repository for User CRUD operations.

Provides database access for the users table. E-mail addresses are
stored normalized, so lookups compare against the normalized form.
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.email == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def username_exists(db: AsyncSession, username: str) -> bool:
        """Check whether a username is already taken."""
        stmt = select(User.id).where(User.username == username)
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        username: str,
        password_hash: str | None = None,
        email_verified: datetime | None = None,
        full_name: str | None = None,
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: User email address.
            username: Unique handle.
            password_hash: bcrypt hash.
            email_verified: Timestamp when email was verified.
            full_name: Display name.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email or username already exists.
        """
        user = User(
            email=email.strip().lower(),
            username=username,
            password_hash=password_hash,
            email_verified=email_verified,
            full_name=full_name,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def set_password_hash(
        db: AsyncSession, user_id: uuid.UUID, password_hash: str
    ) -> bool:
        """Replace a user's password hash.

        Returns:
            True if the user exists and was updated.
        """
        stmt = (
            update(User).where(User.id == user_id).values(password_hash=password_hash)
        )
        result = await db.execute(stmt)
        return bool(result.rowcount)  # type: ignore[attr-defined]
