"""User model - identity owned by the auth service.

Users are created on first successful OTP verification; the e-mail is
stored normalized (trimmed, lowercase) and is marked verified at creation
because the code already proved ownership.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.account import Account
    from app.models.session import Session

_DEFAULT_UUID = text("gen_random_uuid()")
_CASCADE_ALL_DELETE_ORPHAN = "all, delete-orphan"


class User(Base, TimestampMixin):
    """Gigz user account.

    Attributes:
        id: UUID primary key.
        username: Unique handle, generated from the e-mail for OTP sign-ups.
        email: Unique normalized email address.
        email_verified: Timestamp when email was verified. NULL = unverified.
        password_hash: bcrypt hash. Random and unknown to the user for
            accounts created through OTP.
        full_name: Display name.
        profile_picture_url: Avatar URL.
        subscription_status: Plan name, "free" by default.
        total_gigs: Number of concerts logged.
        city: Home city.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    username: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    email_verified: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    full_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    profile_picture_url: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    subscription_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'free'"),
        default="free",
    )
    total_gigs: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    city: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Relationships
    accounts: Mapped[list["Account"]] = relationship(
        "Account",
        back_populates="user",
        cascade=_CASCADE_ALL_DELETE_ORPHAN,
    )
    sessions: Mapped[list["Session"]] = relationship(
        "Session",
        back_populates="user",
        cascade=_CASCADE_ALL_DELETE_ORPHAN,
    )
