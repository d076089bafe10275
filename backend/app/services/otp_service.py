"""OTP e-mail authentication: issue, resend, and verify codes.

Flow: request -> deliver -> verify -> session.

Anti-enumeration rules:
- Issuance always reports success, even when a rate limit was hit (no
  code is issued then) or delivery failed.
- Every verification failure (no code, expired, exhausted, wrong code)
  raises the same NotFoundError with the same message.

E-mail addresses and IPs are only ever logged as hash prefixes.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from app.core.config import Settings
from app.core.errors import InternalError, InvalidArgumentError, NotFoundError
from app.core.otp_crypto import (
    generate_otp_code,
    generate_unusable_password_hash,
    generate_username,
    hash_sha256,
    hashes_match,
    is_valid_email,
    is_valid_otp_code,
    normalize_email,
)
from app.providers.email.base import EmailProvider
from app.services.otp_rate_limiter import OTPRateLimiter, RateLimitRule
from app.services.otp_stores import (
    IdentityStore,
    IdentityStoreError,
    OTPCodeStore,
    OTPRecord,
    RateLimitKind,
    RateLimitStore,
    UserIdentity,
)

logger = structlog.get_logger()

# =============================================================================
# Constants
# =============================================================================

_EMAIL_REQUIRED_MSG = "Email is required"
_INVALID_EMAIL_MSG = "Invalid email format"
_EMAIL_AND_CODE_REQUIRED_MSG = "Email and code are required"
_INVALID_CODE_FORMAT_MSG = "Invalid code format"
# Security: one message for every verification failure mode
_INVALID_CODE_MSG = "Invalid or expired code"
_ACCOUNT_CREATION_FAILED_MSG = "Failed to create account. Please try again."
_SESSION_CREATION_FAILED_MSG = "Failed to create session. Please try again."

_APPLE_PROVIDER = "apple"
_USERNAME_MAX_TRIES = 5
_HASH_LOG_PREFIX = 12


def _utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Policy and results
# =============================================================================


@dataclass(frozen=True)
class OTPPolicy:
    """Tunable limits for the OTP flow.

    Attributes:
        code_ttl: How long an issued code stays valid.
        max_attempts: Wrong submissions allowed before the code is burned.
        email_limit: Issuance limit per e-mail.
        ip_limit: Issuance limit per client IP.
        resend_limit: Extra limit applied to the resend path only.
        session_ttl: Lifetime of sessions minted on success.
    """

    code_ttl: timedelta = timedelta(minutes=10)
    max_attempts: int = 5
    email_limit: RateLimitRule = RateLimitRule(
        RateLimitKind.EMAIL, 5, timedelta(hours=1)
    )
    ip_limit: RateLimitRule = RateLimitRule(RateLimitKind.IP, 10, timedelta(hours=1))
    resend_limit: RateLimitRule = RateLimitRule(
        RateLimitKind.RESEND, 3, timedelta(minutes=10)
    )
    session_ttl: timedelta = timedelta(days=365)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OTPPolicy":
        """Build the policy from application settings."""
        return cls(
            code_ttl=timedelta(minutes=settings.otp_expiry_minutes),
            max_attempts=settings.otp_max_attempts,
            email_limit=RateLimitRule(
                RateLimitKind.EMAIL,
                settings.otp_rate_limit_email_per_hour,
                timedelta(hours=1),
            ),
            ip_limit=RateLimitRule(
                RateLimitKind.IP,
                settings.otp_rate_limit_ip_per_hour,
                timedelta(hours=1),
            ),
            resend_limit=RateLimitRule(
                RateLimitKind.RESEND,
                settings.otp_rate_limit_resend_per_10min,
                timedelta(minutes=10),
            ),
            session_ttl=timedelta(days=settings.session_expiry_days),
        )


@dataclass(frozen=True)
class IssueResult:
    """Outcome reported to the caller of request/resend.

    Identical whether or not a code was actually issued.

    Attributes:
        expires_in: Code lifetime in seconds.
    """

    expires_in: int


@dataclass(frozen=True)
class VerifyResult:
    """Successful verification.

    Attributes:
        session_token: Opaque bearer token for the new session.
        user: Profile of the signed-in user.
        is_new_user: True if the account was created by this verification.
    """

    session_token: str
    user: UserIdentity
    is_new_user: bool


def auth_providers(user: UserIdentity) -> list[str]:
    """Sign-in methods available to a user.

    - "apple" when an Apple account is linked
    - "otp" whenever the user has an e-mail
    - "password" when the user has an e-mail and no external provider link

    Args:
        user: The user identity.

    Returns:
        Provider names in display order.
    """
    providers: list[str] = []
    if _APPLE_PROVIDER in user.linked_providers:
        providers.append(_APPLE_PROVIDER)
    if user.email:
        providers.append("otp")
        if not user.linked_providers:
            providers.append("password")
    return providers


def _log_hash(value: str) -> str:
    return value[:_HASH_LOG_PREFIX]


def validated_email(email: str | None) -> str:
    """Normalize a submitted e-mail, rejecting blank or malformed ones.

    Surrounding whitespace and letter case are normalized away before the
    format and length checks run.

    Raises:
        InvalidArgumentError: If the e-mail is missing or malformed.
    """
    if not email or not email.strip():
        raise InvalidArgumentError(_EMAIL_REQUIRED_MSG)
    normalized = normalize_email(email)
    if not is_valid_email(normalized):
        raise InvalidArgumentError(_INVALID_EMAIL_MSG)
    return normalized


async def pick_username(identities: IdentityStore, normalized_email: str) -> str:
    """Derive a free username from the e-mail local part."""
    username = generate_username(normalized_email)
    for _ in range(_USERNAME_MAX_TRIES - 1):
        if await identities.username_available(username):
            return username
        username = generate_username(normalized_email)
    # Last candidate is used as-is; a collision surfaces as a store error
    return username


# =============================================================================
# Service
# =============================================================================


class OTPService:
    """Issues and verifies e-mail one-time passcodes.

    Args:
        codes: Pending code persistence.
        rate_limits: Rate-limit counter persistence.
        identities: Users and sessions.
        email_provider: Delivers codes.
        policy: Limits and lifetimes.
        clock: Returns the current UTC time. Overridable in tests.
    """

    def __init__(
        self,
        *,
        codes: OTPCodeStore,
        rate_limits: RateLimitStore,
        identities: IdentityStore,
        email_provider: EmailProvider,
        policy: OTPPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._codes = codes
        self._identities = identities
        self._email_provider = email_provider
        self._policy = policy or OTPPolicy()
        self._clock = clock
        self._limiter = OTPRateLimiter(rate_limits, clock=clock)

    @property
    def policy(self) -> OTPPolicy:
        return self._policy

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    async def request_otp(
        self, email: str | None, *, client_ip: str | None = None
    ) -> IssueResult:
        """Issue a code for an e-mail address.

        Applies the per-email limit, then the per-IP limit when the client
        IP is known. When either is exceeded no code is issued, but the
        result is the same as a successful issue.

        Args:
            email: Address as submitted.
            client_ip: Caller's IP, if known.

        Returns:
            IssueResult with the code lifetime.

        Raises:
            InvalidArgumentError: If the e-mail is missing or malformed.
        """
        normalized = validated_email(email)
        return await self._issue_if_allowed(
            normalized,
            client_ip=client_ip,
            rules=(self._policy.email_limit,),
            action="request",
        )

    async def resend_otp(
        self, email: str | None, *, client_ip: str | None = None
    ) -> IssueResult:
        """Re-issue a code, with the stricter resend limit checked first.

        Otherwise identical to request_otp(): the previous code is replaced
        and the attempt counter starts over.

        Raises:
            InvalidArgumentError: If the e-mail is missing or malformed.
        """
        normalized = validated_email(email)
        return await self._issue_if_allowed(
            normalized,
            client_ip=client_ip,
            rules=(self._policy.resend_limit, self._policy.email_limit),
            action="resend",
        )

    async def _issue_if_allowed(
        self,
        normalized_email: str,
        *,
        client_ip: str | None,
        rules: tuple[RateLimitRule, ...],
        action: str,
    ) -> IssueResult:
        result = IssueResult(expires_in=int(self._policy.code_ttl.total_seconds()))
        email_hash = hash_sha256(normalized_email)

        for rule in rules:
            if await self._limiter.check_rule(email_hash, rule):
                return result

        if client_ip:
            ip_hash = hash_sha256(client_ip)
            if await self._limiter.check_rule(ip_hash, self._policy.ip_limit):
                return result

        await self._issue(normalized_email, email_hash)
        logger.info("otp_issued", action=action, email_hash=_log_hash(email_hash))
        return result

    async def _issue(self, normalized_email: str, email_hash: str) -> None:
        """Replace any pending code for the address, then deliver the new one.

        The stored code is kept even if delivery fails; the user can resend.
        """
        await self._codes.delete(email_hash)

        code = generate_otp_code()
        await self._codes.put(
            OTPRecord(
                email_hash=email_hash,
                code_hash=hash_sha256(code),
                expires_at=self._clock() + self._policy.code_ttl,
                attempts=0,
            )
        )

        try:
            await self._email_provider.send_otp(to_email=normalized_email, code=code)
        except Exception:
            logger.warning(
                "otp_delivery_failed",
                provider=self._email_provider.provider_name,
                email_hash=_log_hash(email_hash),
                exc_info=True,
            )

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    async def verify_otp(self, email: str | None, code: str | None) -> VerifyResult:
        """Verify a code and sign the user in, creating the account if needed.

        Failure handling per pending code:
        - none stored: NotFound
        - expired: record deleted, NotFound
        - attempts already at the limit: record deleted, NotFound
        - wrong code: attempts + 1 (record deleted when that reaches the
          limit), NotFound
        - right code but another request consumed it first: NotFound

        Args:
            email: Address as submitted.
            code: 6-digit code as submitted.

        Returns:
            VerifyResult with session token, profile, and new-user flag.

        Raises:
            InvalidArgumentError: Missing or malformed e-mail or code.
            NotFoundError: The code cannot be accepted.
            InternalError: The account or session could not be created.
        """
        if not email or not code:
            raise InvalidArgumentError(_EMAIL_AND_CODE_REQUIRED_MSG)
        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            raise InvalidArgumentError(_INVALID_EMAIL_MSG)
        if not is_valid_otp_code(code):
            raise InvalidArgumentError(_INVALID_CODE_FORMAT_MSG)

        email_hash = hash_sha256(normalized)
        await self._check_code(email_hash, hash_sha256(code))

        user, token, is_new_user = await self._resolve_identity(normalized)
        logger.info(
            "otp_verified",
            email_hash=_log_hash(email_hash),
            user_id=str(user.id),
            is_new_user=is_new_user,
        )
        return VerifyResult(session_token=token, user=user, is_new_user=is_new_user)

    async def _check_code(self, email_hash: str, code_hash: str) -> None:
        """Consume the pending code or raise NotFoundError."""
        record = await self._codes.get(email_hash)
        if record is None:
            raise NotFoundError(_INVALID_CODE_MSG)

        if self._clock() > record.expires_at:
            await self._codes.delete(email_hash)
            logger.info("otp_expired", email_hash=_log_hash(email_hash))
            raise NotFoundError(_INVALID_CODE_MSG)

        if record.attempts >= self._policy.max_attempts:
            await self._codes.delete(email_hash)
            raise NotFoundError(_INVALID_CODE_MSG)

        if not hashes_match(record.code_hash, code_hash):
            attempts = await self._codes.increment_attempts(email_hash)
            if attempts is not None and attempts >= self._policy.max_attempts:
                await self._codes.delete(email_hash)
                logger.info("otp_attempts_exhausted", email_hash=_log_hash(email_hash))
            raise NotFoundError(_INVALID_CODE_MSG)

        # Only the request that removes the row may sign in
        if not await self._codes.consume(email_hash, record.code_hash):
            raise NotFoundError(_INVALID_CODE_MSG)

    async def _resolve_identity(
        self, normalized_email: str
    ) -> tuple[UserIdentity, str, bool]:
        try:
            existing = await self._identities.get_by_email(normalized_email)
        except IdentityStoreError as exc:
            logger.error("otp_identity_lookup_failed", error=str(exc))
            raise InternalError(_SESSION_CREATION_FAILED_MSG) from exc

        if existing is not None:
            try:
                token = await self._identities.mint_session(
                    existing.id, self._policy.session_ttl
                )
            except IdentityStoreError as exc:
                logger.error(
                    "otp_session_creation_failed",
                    user_id=str(existing.id),
                    error=str(exc),
                )
                raise InternalError(_SESSION_CREATION_FAILED_MSG) from exc
            return existing, token, False

        try:
            username = await pick_username(self._identities, normalized_email)
            user, token = await self._identities.create_user(
                email=normalized_email,
                username=username,
                password_hash=generate_unusable_password_hash(),
                email_verified_at=self._clock(),
                session_ttl=self._policy.session_ttl,
            )
        except IdentityStoreError as exc:
            logger.error("otp_account_creation_failed", error=str(exc))
            raise InternalError(_ACCOUNT_CREATION_FAILED_MSG) from exc
        return user, token, True

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def validate_session(self, token: str | None) -> UserIdentity | None:
        """Resolve a session token to its user, or None if not valid.

        Raises:
            InternalError: The identity store failed.
        """
        if not token:
            return None
        try:
            return await self._identities.get_by_session_token(token)
        except IdentityStoreError as exc:
            logger.error("session_lookup_failed", error=str(exc))
            raise InternalError() from exc

    async def logout(self, token: str | None) -> None:
        """Revoke a session token. Unknown tokens are ignored.

        Raises:
            InternalError: The identity store failed.
        """
        if not token:
            return
        try:
            revoked = await self._identities.revoke_session(token)
        except IdentityStoreError as exc:
            logger.error("session_revoke_failed", error=str(exc))
            raise InternalError() from exc
        if revoked:
            logger.info("session_revoked")

