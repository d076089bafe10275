"""E-mail and password sign-up, sign-in, and password changes.

Runs alongside the OTP flow on the same users and sessions. Sessions
record the method that created them ("password" or "otp"); a session
created by an OTP sign-in proves control of the mailbox, so it may set a
new password without the current one. That is the password reset path.

Sign-in failures (unknown e-mail, no password, wrong password) all raise
the same UnauthorizedError after one bcrypt comparison.
"""

from datetime import timedelta

import structlog

from app.core.errors import (
    ConflictError,
    InternalError,
    InvalidArgumentError,
    UnauthorizedError,
)
from app.core.otp_crypto import (
    MAX_PASSWORD_BYTES,
    MAX_USERNAME_LENGTH,
    hash_password,
    password_matches,
)
from app.services.otp_service import VerifyResult, pick_username, validated_email
from app.services.otp_stores import IdentityStore, IdentityStoreError

logger = structlog.get_logger()

PASSWORD_PROVIDER = "password"
_OTP_PROVIDER = "otp"

MIN_PASSWORD_LENGTH = 8

_PASSWORD_TOO_SHORT_MSG = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
_PASSWORD_TOO_LONG_MSG = f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
_INVALID_USERNAME_MSG = f"Username must be 1 to {MAX_USERNAME_LENGTH} characters"
_INVALID_CREDENTIALS_MSG = "Invalid email or password"
_CURRENT_PASSWORD_REQUIRED_MSG = "Current password required"
_CURRENT_PASSWORD_INCORRECT_MSG = "Current password incorrect"
_ACCOUNT_CREATION_FAILED_MSG = "Failed to create account. Please try again."
_SIGN_IN_FAILED_MSG = "Failed to sign in. Please try again."
_PASSWORD_UPDATE_FAILED_MSG = "Failed to update password. Please try again."


def validate_new_password(password: str) -> None:
    """Length rules for a password about to be hashed.

    Raises:
        InvalidArgumentError: Shorter than 8 characters, or longer than
            bcrypt can hash without truncating.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidArgumentError(_PASSWORD_TOO_SHORT_MSG)
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise InvalidArgumentError(_PASSWORD_TOO_LONG_MSG)


class PasswordAuthService:
    """Password-based accounts on top of the identity store.

    Args:
        identities: Users, password hashes, and sessions.
        session_ttl: Lifetime of sessions minted on success.
    """

    def __init__(
        self,
        *,
        identities: IdentityStore,
        session_ttl: timedelta = timedelta(days=365),
    ) -> None:
        self._identities = identities
        self._session_ttl = session_ttl

    async def sign_up(
        self,
        email: str | None,
        password: str,
        *,
        username: str | None = None,
    ) -> VerifyResult:
        """Create an account with a password and sign it in.

        The account is stored with no e-mail verification timestamp.

        Args:
            email: Address as submitted.
            password: Plaintext password.
            username: Requested handle; derived from the e-mail when None.

        Returns:
            VerifyResult with is_new_user=True.

        Raises:
            InvalidArgumentError: Malformed e-mail, password, or username.
            ConflictError: E-mail or username already in use.
            InternalError: The identity store failed.
        """
        normalized = validated_email(email)
        validate_new_password(password)
        if username is not None:
            username = username.strip()
            if not username or len(username) > MAX_USERNAME_LENGTH:
                raise InvalidArgumentError(_INVALID_USERNAME_MSG)

        try:
            if await self._identities.get_by_email(normalized) is not None:
                raise ConflictError(
                    code="EMAIL_TAKEN",
                    message="An account with this email already exists",
                )
            if username is None:
                username = await pick_username(self._identities, normalized)
            elif not await self._identities.username_available(username):
                raise ConflictError(
                    code="USERNAME_TAKEN",
                    message="This username is already taken",
                )
            user, token = await self._identities.create_user(
                email=normalized,
                username=username,
                password_hash=hash_password(password),
                email_verified_at=None,
                session_ttl=self._session_ttl,
                auth_provider=PASSWORD_PROVIDER,
            )
        except IdentityStoreError as exc:
            logger.error("password_signup_failed", error=str(exc))
            raise InternalError(_ACCOUNT_CREATION_FAILED_MSG) from exc

        logger.info("password_signup", user_id=str(user.id))
        return VerifyResult(session_token=token, user=user, is_new_user=True)

    async def sign_in(self, email: str | None, password: str) -> VerifyResult:
        """Check an e-mail and password and mint a session.

        Raises:
            InvalidArgumentError: Missing or malformed e-mail.
            UnauthorizedError: Unknown e-mail or wrong password.
            InternalError: The identity store failed.
        """
        normalized = validated_email(email)
        try:
            user = await self._identities.get_by_email(normalized)
            stored_hash = (
                None
                if user is None
                else await self._identities.get_password_hash(user.id)
            )
            if user is None or not password_matches(password, stored_hash):
                raise UnauthorizedError(_INVALID_CREDENTIALS_MSG)
            token = await self._identities.mint_session(
                user.id, self._session_ttl, PASSWORD_PROVIDER
            )
        except IdentityStoreError as exc:
            logger.error("password_signin_failed", error=str(exc))
            raise InternalError(_SIGN_IN_FAILED_MSG) from exc

        logger.info("password_signin", user_id=str(user.id))
        return VerifyResult(session_token=token, user=user, is_new_user=False)

    async def change_password(
        self,
        session_token: str | None,
        new_password: str,
        *,
        current_password: str | None = None,
    ) -> None:
        """Set a new password for the signed-in user.

        The current password is required unless the session came from an
        OTP sign-in. Every other session of the user is revoked; the
        calling session stays valid.

        Raises:
            UnauthorizedError: No valid session, or wrong current password.
            InvalidArgumentError: New password breaks the length rules, or
                the current password is missing.
            InternalError: The identity store failed.
        """
        if not session_token:
            raise UnauthorizedError()
        validate_new_password(new_password)

        try:
            user = await self._identities.get_by_session_token(session_token)
            provider = await self._identities.get_session_provider(session_token)
            if user is None or provider is None:
                raise UnauthorizedError()

            if provider != _OTP_PROVIDER:
                if not current_password:
                    raise InvalidArgumentError(_CURRENT_PASSWORD_REQUIRED_MSG)
                stored_hash = await self._identities.get_password_hash(user.id)
                if not password_matches(current_password, stored_hash):
                    raise UnauthorizedError(_CURRENT_PASSWORD_INCORRECT_MSG)

            await self._identities.set_password_hash(
                user.id, hash_password(new_password)
            )
            revoked = await self._identities.revoke_other_sessions(
                user.id, session_token
            )
        except IdentityStoreError as exc:
            logger.error("password_change_failed", error=str(exc))
            raise InternalError(_PASSWORD_UPDATE_FAILED_MSG) from exc

        logger.info(
            "password_changed",
            user_id=str(user.id),
            via=provider,
            revoked_sessions=revoked,
        )
