"""OTP code model - one live e-mail verification code per address.

Keyed by the SHA-256 of the normalized e-mail, so neither the address nor
the code is stored in plaintext.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class OTPCode(Base):
    """Pending one-time passcode.

    Replaced on every issuance and deleted on successful verification,
    on expiry, or once the wrong-attempt budget is used up.

    Attributes:
        email_hash: SHA-256 hex of the normalized e-mail (primary key).
        code_hash: SHA-256 hex of the 6-digit code.
        expires_at: Code expiry timestamp.
        attempts: Wrong submissions so far.
        created_at: Issuance timestamp.
    """

    __tablename__ = "otp_codes"
    __table_args__ = (Index("idx_otp_codes_expires_at", "expires_at"),)

    email_hash: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
