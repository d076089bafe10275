"""OTP rate limit model - fixed-window request counters.

One row per (identifier_hash, kind, window). A request after the window
closes starts a new row; old rows are removed by the cleanup job.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base

_DEFAULT_UUID = text("gen_random_uuid()")


class OTPRateLimit(Base):
    """Request counter for one identifier within one window.

    Attributes:
        id: UUID primary key.
        identifier_hash: SHA-256 hex of the e-mail or client IP.
        kind: Which limit this row counts ("email", "ip", "resend").
        count: Requests seen in the window (>= 1).
        window_start: When the window opened.
    """

    __tablename__ = "otp_rate_limits"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('email', 'ip', 'resend')",
            name="ck_otp_rate_limits_kind",
        ),
        CheckConstraint("count >= 1", name="ck_otp_rate_limits_count"),
        Index(
            "idx_otp_rate_limits_lookup",
            "identifier_hash",
            "kind",
            "window_start",
        ),
        Index("idx_otp_rate_limits_window_start", "window_start"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    identifier_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    count: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        server_default=text("1"),
        default=1,
    )
    window_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
