"""PostgreSQL implementations of the sign-in store protocols.

Thin adapters over the static repositories. Every mutation commits
immediately: a wrong-code attempt or an expiry delete must persist even
though the request then fails with NotFound (get_db() rolls back on
exceptions).
"""

import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.otp_crypto import generate_session_token, hash_sha256
from app.models.user import User
from app.repositories.account_repository import AccountRepository
from app.repositories.otp_code_repository import OTPCodeRepository
from app.repositories.rate_limit_repository import RateLimitRepository
from app.repositories.session_repository import SessionRepository
from app.repositories.user_repository import UserRepository
from app.services.otp_stores import (
    IdentityStoreError,
    OTPRecord,
    RateLimitKind,
    RateLimitRecord,
    UserIdentity,
)

_OTP_AUTH_PROVIDER = "otp"


class SqlOTPCodeStore:
    """OTPCodeStore backed by the otp_codes table."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, email_hash: str) -> OTPRecord | None:
        row = await OTPCodeRepository.get(self._db, email_hash=email_hash)
        if row is None:
            return None
        return OTPRecord(
            email_hash=row.email_hash,
            code_hash=row.code_hash,
            expires_at=row.expires_at,
            attempts=row.attempts,
        )

    async def put(self, record: OTPRecord) -> None:
        await OTPCodeRepository.upsert(
            self._db,
            email_hash=record.email_hash,
            code_hash=record.code_hash,
            expires_at=record.expires_at,
        )
        await self._db.commit()

    async def delete(self, email_hash: str) -> None:
        await OTPCodeRepository.delete(self._db, email_hash=email_hash)
        await self._db.commit()

    async def consume(self, email_hash: str, code_hash: str) -> bool:
        removed = await OTPCodeRepository.consume(
            self._db, email_hash=email_hash, code_hash=code_hash
        )
        await self._db.commit()
        return removed

    async def increment_attempts(self, email_hash: str) -> int | None:
        attempts = await OTPCodeRepository.increment_attempts(
            self._db, email_hash=email_hash
        )
        await self._db.commit()
        return attempts


class SqlRateLimitStore:
    """RateLimitStore backed by the otp_rate_limits table."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def find_active(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        window_opened_after: datetime,
    ) -> RateLimitRecord | None:
        row = await RateLimitRepository.find_active(
            self._db,
            identifier_hash=identifier_hash,
            kind=kind.value,
            window_opened_after=window_opened_after,
        )
        if row is None:
            return None
        return RateLimitRecord(
            id=row.id,
            identifier_hash=row.identifier_hash,
            kind=RateLimitKind(row.kind),
            count=row.count,
            window_start=row.window_start,
        )

    async def create(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        window_start: datetime,
    ) -> RateLimitRecord:
        row = await RateLimitRepository.create(
            self._db,
            identifier_hash=identifier_hash,
            kind=kind.value,
            window_start=window_start,
        )
        await self._db.commit()
        return RateLimitRecord(
            id=row.id,
            identifier_hash=row.identifier_hash,
            kind=kind,
            count=row.count,
            window_start=row.window_start,
        )

    async def increment_if_below(self, record: RateLimitRecord, limit: int) -> bool:
        incremented = await RateLimitRepository.increment_if_below(
            self._db, record_id=record.id, limit=limit
        )
        await self._db.commit()
        return incremented


class SqlIdentityStore:
    """IdentityStore backed by the users, accounts, and sessions tables.

    Database errors roll back the session and surface as IdentityStoreError,
    so a failed account creation never leaves a user without a session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _to_identity(self, user: User) -> UserIdentity:
        providers = await AccountRepository.list_providers(self._db, user.id)
        return UserIdentity(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            profile_picture_url=user.profile_picture_url,
            subscription_status=user.subscription_status,
            total_gigs=user.total_gigs,
            city=user.city,
            linked_providers=tuple(providers),
        )

    async def _create_session(
        self, user_id: uuid.UUID, ttl: timedelta, auth_provider: str
    ) -> str:
        plain, token_hash = generate_session_token()
        await SessionRepository.create(
            self._db,
            user_id=user_id,
            token_hash=token_hash,
            auth_provider=auth_provider,
            expires_at=datetime.now(UTC) + ttl,
        )
        return plain

    async def get_by_email(self, email: str) -> UserIdentity | None:
        try:
            user = await UserRepository.get_by_email(self._db, email)
            return None if user is None else await self._to_identity(user)
        except SQLAlchemyError as exc:
            raise IdentityStoreError("User lookup failed") from exc

    async def username_available(self, username: str) -> bool:
        try:
            return not await UserRepository.username_exists(self._db, username)
        except SQLAlchemyError as exc:
            raise IdentityStoreError("Username lookup failed") from exc

    async def create_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        email_verified_at: datetime | None,
        session_ttl: timedelta,
        auth_provider: str = _OTP_AUTH_PROVIDER,
    ) -> tuple[UserIdentity, str]:
        try:
            user = await UserRepository.create(
                self._db,
                email=email,
                username=username,
                password_hash=password_hash,
                email_verified=email_verified_at,
            )
            token = await self._create_session(user.id, session_ttl, auth_provider)
            identity = await self._to_identity(user)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise IdentityStoreError("User creation failed") from exc
        return identity, token

    async def mint_session(
        self,
        user_id: uuid.UUID,
        ttl: timedelta,
        auth_provider: str = _OTP_AUTH_PROVIDER,
    ) -> str:
        try:
            token = await self._create_session(user_id, ttl, auth_provider)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise IdentityStoreError("Session creation failed") from exc
        return token

    async def get_by_session_token(self, token: str) -> UserIdentity | None:
        try:
            session = await SessionRepository.get_active(
                self._db, token_hash=hash_sha256(token)
            )
            if session is None:
                return None
            user = await UserRepository.get_by_id(self._db, session.user_id)
            return None if user is None else await self._to_identity(user)
        except SQLAlchemyError as exc:
            raise IdentityStoreError("Session lookup failed") from exc

    async def get_session_provider(self, token: str) -> str | None:
        try:
            session = await SessionRepository.get_active(
                self._db, token_hash=hash_sha256(token)
            )
        except SQLAlchemyError as exc:
            raise IdentityStoreError("Session lookup failed") from exc
        return None if session is None else session.auth_provider

    async def revoke_session(self, token: str) -> bool:
        try:
            removed = await SessionRepository.delete_by_token_hash(
                self._db, token_hash=hash_sha256(token)
            )
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise IdentityStoreError("Session revocation failed") from exc
        return removed

    async def revoke_other_sessions(self, user_id: uuid.UUID, keep_token: str) -> int:
        try:
            removed = await SessionRepository.delete_for_user_except(
                self._db, user_id=user_id, keep_token_hash=hash_sha256(keep_token)
            )
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise IdentityStoreError("Session revocation failed") from exc
        return removed

    async def get_password_hash(self, user_id: uuid.UUID) -> str | None:
        try:
            user = await UserRepository.get_by_id(self._db, user_id)
        except SQLAlchemyError as exc:
            raise IdentityStoreError("User lookup failed") from exc
        return None if user is None else user.password_hash

    async def set_password_hash(self, user_id: uuid.UUID, password_hash: str) -> None:
        try:
            await UserRepository.set_password_hash(self._db, user_id, password_hash)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise IdentityStoreError("Password update failed") from exc
