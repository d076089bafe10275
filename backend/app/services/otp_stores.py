"""Records and store interfaces for the e-mail sign-in flows.

The OTP and password services only talk to these protocols. PostgreSQL-backed
implementations live in app.services.otp_persistence; tests use in-memory
fakes with the same shape.

WHY PROTOCOLS:
- Issuance/verification rules are tested without a database
- Each store exposes only the operations the flow needs (no generic CRUD)
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol


class RateLimitKind(str, Enum):
    """Which limit a rate-limit counter tracks."""

    EMAIL = "email"
    IP = "ip"
    RESEND = "resend"


@dataclass(frozen=True)
class OTPRecord:
    """A pending code for one e-mail address.

    Attributes:
        email_hash: SHA-256 hex of the normalized e-mail.
        code_hash: SHA-256 hex of the 6-digit code.
        expires_at: When the code stops being accepted.
        attempts: Wrong submissions so far.
    """

    email_hash: str
    code_hash: str
    expires_at: datetime
    attempts: int = 0


@dataclass(frozen=True)
class RateLimitRecord:
    """Request counter for one identifier in one window.

    Attributes:
        id: Row identifier, used for conditional increments.
        identifier_hash: SHA-256 hex of the e-mail or client IP.
        kind: Which limit this counts.
        count: Requests seen in the window (>= 1).
        window_start: When the window opened.
    """

    id: uuid.UUID
    identifier_hash: str
    kind: RateLimitKind
    count: int
    window_start: datetime


@dataclass(frozen=True)
class UserIdentity:
    """Profile fields the auth flow returns to clients.

    Attributes:
        id: User UUID.
        username: Unique handle.
        email: Normalized e-mail address (None for provider-only users).
        full_name: Display name.
        profile_picture_url: Avatar URL.
        subscription_status: Plan name.
        total_gigs: Number of concerts logged.
        city: Home city.
        linked_providers: External identity providers linked to the user.
    """

    id: uuid.UUID
    username: str
    email: str | None
    full_name: str | None = None
    profile_picture_url: str | None = None
    subscription_status: str = "free"
    total_gigs: int = 0
    city: str | None = None
    linked_providers: tuple[str, ...] = field(default_factory=tuple)


class IdentityStoreError(Exception):
    """Raised when the identity store cannot complete an operation.

    Wraps the underlying database error so callers do not depend on the
    storage backend.
    """


class OTPCodeStore(Protocol):
    """Persistence for pending OTP codes (one per e-mail hash)."""

    async def get(self, email_hash: str) -> OTPRecord | None: ...

    async def put(self, record: OTPRecord) -> None: ...

    async def delete(self, email_hash: str) -> None: ...

    async def consume(self, email_hash: str, code_hash: str) -> bool:
        """Delete the record only if it still holds this code hash.

        Returns True for exactly one caller per issued code.
        """
        ...

    async def increment_attempts(self, email_hash: str) -> int | None:
        """Add one wrong attempt; return the new count (None if gone)."""
        ...


class RateLimitStore(Protocol):
    """Persistence for fixed-window request counters."""

    async def find_active(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        window_opened_after: datetime,
    ) -> RateLimitRecord | None: ...

    async def create(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        window_start: datetime,
    ) -> RateLimitRecord: ...

    async def increment_if_below(self, record: RateLimitRecord, limit: int) -> bool:
        """Increment unless the stored count already reached the limit."""
        ...


class IdentityStore(Protocol):
    """Users, their password hashes, and their sessions.

    Every method raises IdentityStoreError on backend failure.
    """

    async def get_by_email(self, email: str) -> UserIdentity | None: ...

    async def username_available(self, username: str) -> bool: ...

    async def create_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        email_verified_at: datetime | None,
        session_ttl: timedelta,
        auth_provider: str = "otp",
    ) -> tuple[UserIdentity, str]:
        """Create a user and its first session in one transaction.

        Returns:
            (identity, plain session token).
        """
        ...

    async def mint_session(
        self, user_id: uuid.UUID, ttl: timedelta, auth_provider: str = "otp"
    ) -> str:
        """Create a session for an existing user; return the plain token."""
        ...

    async def get_by_session_token(self, token: str) -> UserIdentity | None:
        """Resolve an unexpired session token to its user."""
        ...

    async def get_session_provider(self, token: str) -> str | None:
        """Sign-in method of an unexpired session, None if not valid."""
        ...

    async def revoke_session(self, token: str) -> bool: ...

    async def revoke_other_sessions(self, user_id: uuid.UUID, keep_token: str) -> int:
        """Delete every session of the user except keep_token's."""
        ...

    async def get_password_hash(self, user_id: uuid.UUID) -> str | None: ...

    async def set_password_hash(self, user_id: uuid.UUID, password_hash: str) -> None:
        ...
