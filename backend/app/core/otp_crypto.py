"""Hashing and random-value helpers for e-mail authentication.

E-mail addresses, client IPs, OTP codes, and session tokens are only ever
stored as SHA-256 hex digests, passwords as bcrypt hashes. Every random
value comes from the ``secrets`` module (CSPRNG).
"""

import functools
import hashlib
import hmac
import re
import secrets
import string

import bcrypt

OTP_CODE_LENGTH = 6

# Column limits of users.email and users.username
MAX_EMAIL_LENGTH = 255
MAX_USERNAME_LENGTH = 64

# RFC 5321 limit on the part before the "@"
_MAX_LOCAL_PART_LENGTH = 64

# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

_OTP_CODE_SPACE = 10**OTP_CODE_LENGTH

# Control characters excluded: PostgreSQL rejects NUL in text columns
_EMAIL_PART = r"[^\s@\x00-\x1f\x7f]+"
_EMAIL_RE = re.compile(rf"{_EMAIL_PART}@{_EMAIL_PART}\.{_EMAIL_PART}")
_OTP_CODE_RE = re.compile(r"[0-9]{6}")
_USERNAME_STRIP_RE = re.compile(r"[^a-z0-9]")

_USERNAME_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_USERNAME_SUFFIX_LENGTH = 4

# Session tokens keep the "r:" prefix clients already recognise
_SESSION_TOKEN_PREFIX = "r:"

# bcrypt cost factor for stored passwords
_BCRYPT_ROUNDS = 12


def normalize_email(email: str) -> str:
    """Trim and lowercase an e-mail address for consistent hashing."""
    return email.strip().lower()


def hash_sha256(value: str) -> str:
    """Return the SHA-256 hex digest of a string."""
    return hashlib.sha256(value.encode()).hexdigest()


def hashes_match(left: str, right: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(left.encode(), right.encode())


def is_valid_email(email: str) -> bool:
    """Shape and length check: something@something.tld, no whitespace.

    Pass the normalized address; lowercasing can lengthen some Unicode
    characters, and the stored form must fit users.email.
    """
    if len(email) > MAX_EMAIL_LENGTH or _EMAIL_RE.fullmatch(email) is None:
        return False
    local_part = email.rsplit("@", 1)[0]
    return len(local_part) <= _MAX_LOCAL_PART_LENGTH


def is_valid_otp_code(code: str) -> bool:
    """Check that a submitted code is exactly six ASCII digits."""
    return _OTP_CODE_RE.fullmatch(code) is not None


def generate_otp_code() -> str:
    """Generate a zero-padded 6-digit code, uniform over [0, 1_000_000).

    No uniqueness check: codes are scoped per e-mail and short-lived.
    """
    return str(secrets.randbelow(_OTP_CODE_SPACE)).zfill(OTP_CODE_LENGTH)


def generate_username(email: str) -> str:
    """Build a username from the e-mail local part plus a random suffix.

    Example: "Jane.Doe+gigs@example.com" -> "janedoegigs" + "x4k9".
    """
    local_part = normalize_email(email).split("@", 1)[0]
    base = _USERNAME_STRIP_RE.sub("", local_part) or "user"
    base = base[: MAX_USERNAME_LENGTH - _USERNAME_SUFFIX_LENGTH]
    suffix = "".join(
        secrets.choice(_USERNAME_SUFFIX_ALPHABET)
        for _ in range(_USERNAME_SUFFIX_LENGTH)
    )
    return f"{base}{suffix}"


def hash_password(password: str) -> str:
    """bcrypt hash (cost 12) of a password of at most MAX_PASSWORD_BYTES."""
    salt = bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode(), salt).decode()


@functools.cache
def _dummy_password_hash() -> bytes:
    return hash_password(secrets.token_urlsafe(32)).encode()


def password_matches(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored bcrypt hash.

    Security: runs one bcrypt comparison even when there is no hash (or
    the password is too long to have been stored), so response time does
    not reveal whether the account exists.
    """
    encoded = password.encode()
    if password_hash is None or len(encoded) > MAX_PASSWORD_BYTES:
        bcrypt.checkpw(encoded[:MAX_PASSWORD_BYTES], _dummy_password_hash())
        return False
    return bcrypt.checkpw(encoded, password_hash.encode())


def generate_unusable_password_hash() -> str:
    """bcrypt hash of a random secret nobody ever sees.

    OTP-created accounts need a password_hash, but the plaintext is
    discarded immediately so the account cannot sign in with a password
    until the user sets one.
    """
    return hash_password(secrets.token_urlsafe(32))


def generate_session_token() -> tuple[str, str]:
    """Generate an opaque session token and its SHA-256 hash.

    Returns:
        (plain_token, token_hash) - plain for the client, hash for DB storage.
    """
    plain = f"{_SESSION_TOKEN_PREFIX}{secrets.token_hex(32)}"
    return plain, hash_sha256(plain)
