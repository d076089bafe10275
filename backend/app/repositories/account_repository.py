"""Repository for Account CRUD operations.

Provides database access for the accounts table (external identity
provider links). Follows the repository pattern of UserRepository.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.account import Account


class AccountRepository:
    """Stateless repository for Account table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        provider: str,
        provider_account_id: str,
    ) -> Account:
        """Create a new account record linking a provider to a user.

        Args:
            db: Async database session.
            user_id: FK to users table.
            provider: Provider name ("apple").
            provider_account_id: Provider's unique user identifier.

        Returns:
            Created Account with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If provider+account_id already exists.
        """
        account = Account(
            user_id=user_id,
            provider=provider,
            provider_account_id=provider_account_id,
        )
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def list_providers(db: AsyncSession, user_id: uuid.UUID) -> list[str]:
        """List the distinct provider names linked to a user.

        Args:
            db: Async database session.
            user_id: UUID of the user.

        Returns:
            Provider names sorted alphabetically (may be empty).
        """
        stmt = (
            select(Account.provider)
            .where(Account.user_id == user_id)
            .distinct()
            .order_by(Account.provider)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
