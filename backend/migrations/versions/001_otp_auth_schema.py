"""Create identity and OTP tables.

Revision ID: 001_otp_auth_schema
Revises:
Create Date: 2026-10-18

- users: identity with normalized unique e-mail and username
- accounts: external identity provider links (Sign in with Apple)
- sessions: opaque session tokens, stored as SHA-256 hashes
- otp_codes: one pending code per hashed e-mail
- otp_rate_limits: fixed-window issuance counters
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_otp_auth_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID_DEFAULT = sa.text("gen_random_uuid()")


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        server_default=_UUID_DEFAULT,
        primary_key=True,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() for UUID primary keys
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # =========================================================================
    # users
    # =========================================================================
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("username", sa.String(64), unique=True, nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("profile_picture_url", sa.Text(), nullable=True),
        sa.Column(
            "subscription_status",
            sa.String(20),
            server_default=sa.text("'free'"),
            nullable=False,
        ),
        sa.Column(
            "total_gigs", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column("city", sa.String(255), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # =========================================================================
    # accounts
    # =========================================================================
    op.create_table(
        "accounts",
        _uuid_pk(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_account_id", sa.String(255), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "provider", "provider_account_id", name="uq_accounts_provider_account"
        ),
    )
    op.create_index("idx_accounts_user_id", "accounts", ["user_id"])

    # =========================================================================
    # sessions
    # =========================================================================
    op.create_table(
        "sessions",
        _uuid_pk(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("auth_provider", sa.String(20), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index("idx_sessions_user_id", "sessions", ["user_id"])
    op.create_index("idx_sessions_expires_at", "sessions", ["expires_at"])

    # =========================================================================
    # otp_codes (keyed by hashed e-mail, no UUID id)
    # =========================================================================
    op.create_table(
        "otp_codes",
        sa.Column("email_hash", sa.String(64), primary_key=True),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "attempts", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        _created_at(),
    )
    op.create_index("idx_otp_codes_expires_at", "otp_codes", ["expires_at"])

    # =========================================================================
    # otp_rate_limits
    # =========================================================================
    op.create_table(
        "otp_rate_limits",
        _uuid_pk(),
        sa.Column("identifier_hash", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(10), nullable=False),
        sa.Column("count", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "kind IN ('email', 'ip', 'resend')", name="ck_otp_rate_limits_kind"
        ),
        sa.CheckConstraint("count >= 1", name="ck_otp_rate_limits_count"),
    )
    op.create_index(
        "idx_otp_rate_limits_lookup",
        "otp_rate_limits",
        ["identifier_hash", "kind", "window_start"],
    )
    op.create_index(
        "idx_otp_rate_limits_window_start", "otp_rate_limits", ["window_start"]
    )


def downgrade() -> None:
    # Drop tables (reverse order of creation)
    op.drop_index("idx_otp_rate_limits_window_start", table_name="otp_rate_limits")
    op.drop_index("idx_otp_rate_limits_lookup", table_name="otp_rate_limits")
    op.drop_table("otp_rate_limits")

    op.drop_index("idx_otp_codes_expires_at", table_name="otp_codes")
    op.drop_table("otp_codes")

    op.drop_index("idx_sessions_expires_at", table_name="sessions")
    op.drop_index("idx_sessions_user_id", table_name="sessions")
    op.drop_table("sessions")

    op.drop_index("idx_accounts_user_id", table_name="accounts")
    op.drop_table("accounts")

    op.drop_table("users")
