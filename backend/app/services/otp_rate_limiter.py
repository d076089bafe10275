"""Persisted fixed-window rate limiting for OTP issuance.

Counters live in the RateLimitStore keyed by (identifier_hash, kind), so
limits hold across processes and restarts. Exceeding a limit is not an
error: the OTP service reports success and simply skips issuing a code.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from app.services.otp_stores import RateLimitKind, RateLimitStore

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RateLimitRule:
    """One limit: at most ``limit`` requests per ``window`` per identifier.

    Attributes:
        kind: Counter dimension (email, ip, resend).
        limit: Maximum requests in a window.
        window: Window length.
    """

    kind: RateLimitKind
    limit: int
    window: timedelta


class OTPRateLimiter:
    """Check-and-increment over a RateLimitStore.

    Args:
        store: Counter persistence.
        clock: Returns the current UTC time. Overridable in tests.
    """

    def __init__(
        self,
        store: RateLimitStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def check_and_increment(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        limit: int,
        window: timedelta,
    ) -> bool:
        """Count one request and report whether the limit was already hit.

        - Open window with count >= limit: exceeded, nothing is written.
        - Open window with count < limit: count + 1, not exceeded.
        - No open window: a new one starts with count 1, not exceeded.

        Args:
            identifier_hash: SHA-256 hex of the e-mail or client IP.
            kind: Counter dimension.
            limit: Maximum requests per window.
            window: Window length.

        Returns:
            True if the request exceeds the limit.
        """
        now = self._clock()
        record = await self._store.find_active(identifier_hash, kind, now - window)

        if record is None:
            await self._store.create(identifier_hash, kind, now)
            return False

        if record.count >= limit:
            return True

        # A concurrent request may have taken the last slot since the read
        incremented = await self._store.increment_if_below(record, limit)
        return not incremented

    async def check_rule(self, identifier_hash: str, rule: RateLimitRule) -> bool:
        """check_and_increment() for a RateLimitRule; logs when exceeded."""
        exceeded = await self.check_and_increment(
            identifier_hash, rule.kind, rule.limit, rule.window
        )
        if exceeded:
            logger.info(
                "otp_rate_limit_exceeded",
                kind=rule.kind.value,
                identifier=identifier_hash[:12],
                limit=rule.limit,
            )
        return exceeded
