"""Tests for OTPService: issuance, resend, verification, and sessions.

All stores are in-memory fakes (see conftest.py) and the clock is frozen,
so expiry and rate-limit windows are driven explicitly.
"""

import uuid
from datetime import timedelta

import pytest

from app.core.config import Settings
from app.core.errors import InternalError, InvalidArgumentError, NotFoundError
from app.core.otp_crypto import hash_sha256
from app.providers.errors import AuthenticationError, TransientError
from app.services.otp_service import OTPPolicy, OTPService, auth_providers
from app.services.otp_stores import OTPRecord, RateLimitKind, UserIdentity

_EMAIL = "a@b.com"
_EMAIL_HASH = hash_sha256(_EMAIL)
_INVALID_CODE_MSG = "Invalid or expired code"


def _wrong_code(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


# =============================================================================
# Issuance
# =============================================================================


class TestRequestOtp:
    async def test_stores_hashed_code_and_sends_plaintext(
        self, otp_service, code_store, mock_email, clock
    ):
        result = await otp_service.request_otp(_EMAIL)

        assert result.expires_in == 600
        code = mock_email.last_code_for(_EMAIL)
        assert code is not None
        record = code_store.records[_EMAIL_HASH]
        assert record.code_hash == hash_sha256(code)
        assert record.attempts == 0
        assert record.expires_at == clock.now + timedelta(minutes=10)

    async def test_normalizes_email_before_hashing_and_sending(
        self, otp_service, code_store, mock_email
    ):
        await otp_service.request_otp("  A@B.COM ")

        assert list(code_store.records) == [_EMAIL_HASH]
        assert mock_email.sent[0].to == _EMAIL

    async def test_never_stores_plaintext_email_or_code(
        self, otp_service, code_store, mock_email
    ):
        await otp_service.request_otp(_EMAIL)

        code = mock_email.last_code_for(_EMAIL)
        record = code_store.records[_EMAIL_HASH]
        assert _EMAIL not in (record.email_hash, record.code_hash)
        assert code not in (record.email_hash, record.code_hash)

    async def test_second_request_replaces_first_code(
        self, otp_service, code_store, mock_email, monkeypatch
    ):
        codes = iter(["111111", "222222"])
        monkeypatch.setattr(
            "app.services.otp_service.generate_otp_code", lambda: next(codes)
        )

        await otp_service.request_otp(_EMAIL)
        await otp_service.request_otp(_EMAIL)

        assert len(code_store.records) == 1
        with pytest.raises(NotFoundError):
            await otp_service.verify_otp(_EMAIL, "111111")
        result = await otp_service.verify_otp(_EMAIL, "222222")
        assert result.session_token

    async def test_reissue_resets_attempts(self, otp_service, code_store, mock_email):
        await otp_service.request_otp(_EMAIL)
        wrong = _wrong_code(mock_email.last_code_for(_EMAIL))
        for _ in range(3):
            with pytest.raises(NotFoundError):
                await otp_service.verify_otp(_EMAIL, wrong)
        assert code_store.records[_EMAIL_HASH].attempts == 3

        await otp_service.request_otp(_EMAIL)

        assert code_store.records[_EMAIL_HASH].attempts == 0

    @pytest.mark.parametrize("email", [None, "", "   "])
    async def test_missing_email_is_invalid_argument(
        self, otp_service, code_store, rate_limit_store, email
    ):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.request_otp(email)

        assert exc_info.value.message == "Email is required"
        assert code_store.records == {}
        assert rate_limit_store.records == []

    @pytest.mark.parametrize("email", ["not-an-email", "a@b", "a b@c.com"])
    async def test_malformed_email_is_invalid_argument(
        self, otp_service, code_store, rate_limit_store, email
    ):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.request_otp(email)

        assert exc_info.value.message == "Invalid email format"
        assert code_store.records == {}
        assert rate_limit_store.records == []

    @pytest.mark.parametrize(
        "email",
        [
            "a" * 65 + "@example.com",
            "a@" + "b" * 250 + ".com",
            "a@" + "\u0130" * 127 + ".com",
        ],
    )
    async def test_address_too_long_to_store_is_invalid_argument(
        self, otp_service, code_store, mock_email, email
    ):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.request_otp(email)

        assert exc_info.value.message == "Invalid email format"
        assert code_store.records == {}
        assert mock_email.sent == []

    @pytest.mark.parametrize("email", [" a@b.com ", "\tA@b.Com\n", "A@B.COM"])
    async def test_padded_or_mixed_case_email_is_accepted(
        self, otp_service, code_store, mock_email, email
    ):
        result = await otp_service.request_otp(email)

        assert result.expires_in == 600
        assert list(code_store.records) == [_EMAIL_HASH]
        assert mock_email.last_code_for(_EMAIL) is not None

    async def test_delivery_failure_still_reports_success_and_keeps_code(
        self, otp_service, code_store, mock_email
    ):
        mock_email.fail_with = TransientError("provider down")

        result = await otp_service.request_otp(_EMAIL)

        assert result.expires_in == 600
        assert _EMAIL_HASH in code_store.records
        assert mock_email.sent == []

    async def test_unexpected_delivery_error_is_swallowed(
        self, otp_service, code_store, mock_email
    ):
        async def explode(*, to_email, code):
            raise RuntimeError("boom")

        mock_email.send_otp = explode

        result = await otp_service.request_otp(_EMAIL)

        assert result.expires_in == 600
        assert _EMAIL_HASH in code_store.records


class TestIssuanceRateLimits:
    async def test_sixth_request_in_an_hour_reports_success_but_issues_nothing(
        self, otp_service, code_store, mock_email
    ):
        for _ in range(5):
            await otp_service.request_otp(_EMAIL)
        record_before = code_store.records[_EMAIL_HASH]
        last_code = mock_email.last_code_for(_EMAIL)

        result = await otp_service.request_otp(_EMAIL)

        assert result.expires_in == 600
        assert len(mock_email.sent) == 5
        assert code_store.records[_EMAIL_HASH] == record_before
        verified = await otp_service.verify_otp(_EMAIL, last_code)
        assert verified.is_new_user is True

    async def test_email_limit_resets_after_the_hour(
        self, otp_service, mock_email, clock
    ):
        for _ in range(6):
            await otp_service.request_otp(_EMAIL)
        assert len(mock_email.sent) == 5

        clock.advance(timedelta(hours=1, seconds=1))
        await otp_service.request_otp(_EMAIL)

        assert len(mock_email.sent) == 6

    async def test_ip_limit_spans_email_addresses(self, otp_service, mock_email):
        for i in range(10):
            await otp_service.request_otp(f"user{i}@b.com", client_ip="203.0.113.7")

        await otp_service.request_otp("user10@b.com", client_ip="203.0.113.7")

        assert len(mock_email.sent) == 10
        assert mock_email.last_code_for("user10@b.com") is None

    async def test_ip_limit_skipped_without_client_ip(self, otp_service, mock_email):
        for i in range(12):
            await otp_service.request_otp(f"user{i}@b.com")

        assert len(mock_email.sent) == 12

    async def test_ip_is_stored_hashed(self, otp_service, rate_limit_store):
        await otp_service.request_otp(_EMAIL, client_ip="203.0.113.7")

        assert (
            rate_limit_store.count_for(hash_sha256("203.0.113.7"), RateLimitKind.IP)
            == 1
        )

    async def test_email_limit_checked_before_ip(
        self, otp_service, rate_limit_store
    ):
        """An e-mail-limited request does not consume the caller's IP budget."""
        for _ in range(6):
            await otp_service.request_otp(_EMAIL, client_ip="203.0.113.7")

        assert (
            rate_limit_store.count_for(hash_sha256("203.0.113.7"), RateLimitKind.IP)
            == 5
        )


class TestResendOtp:
    async def test_resend_issues_fresh_code(
        self, otp_service, code_store, mock_email, monkeypatch
    ):
        codes = iter(["111111", "222222"])
        monkeypatch.setattr(
            "app.services.otp_service.generate_otp_code", lambda: next(codes)
        )
        await otp_service.request_otp(_EMAIL)

        result = await otp_service.resend_otp(_EMAIL)

        assert result.expires_in == 600
        assert mock_email.last_code_for(_EMAIL) == "222222"
        assert code_store.records[_EMAIL_HASH].code_hash == hash_sha256("222222")
        with pytest.raises(NotFoundError):
            await otp_service.verify_otp(_EMAIL, "111111")

    async def test_fourth_resend_in_ten_minutes_issues_nothing(
        self, otp_service, mock_email, rate_limit_store
    ):
        for _ in range(4):
            await otp_service.resend_otp(_EMAIL)

        assert len(mock_email.sent) == 3
        assert rate_limit_store.count_for(_EMAIL_HASH, RateLimitKind.RESEND) == 3
        # Resend-limited request never reached the per-email counter
        assert rate_limit_store.count_for(_EMAIL_HASH, RateLimitKind.EMAIL) == 3

    async def test_resend_limit_resets_after_ten_minutes(
        self, otp_service, mock_email, clock
    ):
        for _ in range(4):
            await otp_service.resend_otp(_EMAIL)

        clock.advance(timedelta(minutes=10, seconds=1))
        await otp_service.resend_otp(_EMAIL)

        assert len(mock_email.sent) == 4

    async def test_resends_count_against_email_limit(self, otp_service, mock_email):
        for _ in range(3):
            await otp_service.request_otp(_EMAIL)
        for _ in range(3):
            await otp_service.resend_otp(_EMAIL)

        # 3 requests + 2 resends reach the hourly per-email limit of 5
        assert len(mock_email.sent) == 5

    async def test_resend_validates_email(self, otp_service):
        with pytest.raises(InvalidArgumentError):
            await otp_service.resend_otp("nope")


# =============================================================================
# Verification
# =============================================================================


class TestVerifyOtp:
    async def test_request_then_verify_creates_user_and_consumes_code(
        self, otp_service, code_store, identity_store, mock_email
    ):
        await otp_service.request_otp(_EMAIL)
        assert len(code_store.records) == 1

        result = await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        assert result.session_token
        assert result.is_new_user is True
        assert result.user.email == _EMAIL
        assert _EMAIL_HASH not in code_store.records
        assert result.user.id in identity_store.users

    async def test_code_verifies_only_once(self, otp_service, mock_email):
        await otp_service.request_otp(_EMAIL)
        code = mock_email.last_code_for(_EMAIL)
        await otp_service.verify_otp(_EMAIL, code)

        with pytest.raises(NotFoundError) as exc_info:
            await otp_service.verify_otp(_EMAIL, code)

        assert exc_info.value.message == _INVALID_CODE_MSG

    async def test_no_prior_request_is_not_found(self, otp_service):
        with pytest.raises(NotFoundError) as exc_info:
            await otp_service.verify_otp(_EMAIL, "000000")

        assert exc_info.value.message == _INVALID_CODE_MSG

    async def test_verify_normalizes_email(self, otp_service, mock_email):
        await otp_service.request_otp(_EMAIL)

        result = await otp_service.verify_otp(
            " A@B.com", mock_email.last_code_for(_EMAIL)
        )

        assert result.user.email == _EMAIL

    async def test_wrong_codes_below_limit_keep_record(
        self, otp_service, code_store, mock_email
    ):
        await otp_service.request_otp(_EMAIL)
        code = mock_email.last_code_for(_EMAIL)
        wrong = _wrong_code(code)

        for expected_attempts in range(1, 5):
            with pytest.raises(NotFoundError):
                await otp_service.verify_otp(_EMAIL, wrong)
            assert code_store.records[_EMAIL_HASH].attempts == expected_attempts

        result = await otp_service.verify_otp(_EMAIL, code)
        assert result.session_token

    async def test_fifth_wrong_code_deletes_record(
        self, otp_service, code_store, mock_email
    ):
        await otp_service.request_otp(_EMAIL)
        code = mock_email.last_code_for(_EMAIL)
        wrong = _wrong_code(code)

        for _ in range(5):
            with pytest.raises(NotFoundError):
                await otp_service.verify_otp(_EMAIL, wrong)

        assert _EMAIL_HASH not in code_store.records
        with pytest.raises(NotFoundError) as exc_info:
            await otp_service.verify_otp(_EMAIL, code)
        assert exc_info.value.message == _INVALID_CODE_MSG

    async def test_record_at_attempt_limit_is_deleted_even_for_correct_code(
        self, otp_service, code_store, clock
    ):
        await code_store.put(
            OTPRecord(
                email_hash=_EMAIL_HASH,
                code_hash=hash_sha256("123456"),
                expires_at=clock.now + timedelta(minutes=5),
                attempts=5,
            )
        )

        with pytest.raises(NotFoundError):
            await otp_service.verify_otp(_EMAIL, "123456")

        assert _EMAIL_HASH not in code_store.records

    async def test_expired_code_is_not_found_and_deleted(
        self, otp_service, code_store, mock_email, clock
    ):
        await otp_service.request_otp(_EMAIL)
        code = mock_email.last_code_for(_EMAIL)

        clock.advance(timedelta(minutes=10, seconds=1))

        with pytest.raises(NotFoundError) as exc_info:
            await otp_service.verify_otp(_EMAIL, code)
        assert exc_info.value.message == _INVALID_CODE_MSG
        assert _EMAIL_HASH not in code_store.records

    async def test_code_is_valid_until_expiry_instant(
        self, otp_service, mock_email, clock
    ):
        await otp_service.request_otp(_EMAIL)
        code = mock_email.last_code_for(_EMAIL)

        clock.advance(timedelta(minutes=10))

        result = await otp_service.verify_otp(_EMAIL, code)
        assert result.session_token

    async def test_expired_wrong_code_does_not_count_attempt(
        self, otp_service, code_store, mock_email, clock
    ):
        await otp_service.request_otp(_EMAIL)
        wrong = _wrong_code(mock_email.last_code_for(_EMAIL))
        clock.advance(timedelta(minutes=11))

        with pytest.raises(NotFoundError):
            await otp_service.verify_otp(_EMAIL, wrong)

        assert code_store.records == {}

    async def test_lost_consume_race_is_not_found(
        self, otp_service, code_store, identity_store, mock_email
    ):
        await otp_service.request_otp(_EMAIL)

        async def already_consumed(_email_hash, _code_hash):
            return False

        code_store.consume = already_consumed

        with pytest.raises(NotFoundError):
            await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))
        assert identity_store.users == {}
        assert identity_store.sessions == {}

    @pytest.mark.parametrize(
        ("email", "code"),
        [(None, "123456"), (_EMAIL, None), ("", "123456"), (_EMAIL, "")],
    )
    async def test_missing_fields_are_invalid_argument(self, otp_service, email, code):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.verify_otp(email, code)

        assert exc_info.value.message == "Email and code are required"

    @pytest.mark.parametrize("code", ["12345", "1234567", "abcdef", "12 456"])
    async def test_malformed_code_is_invalid_argument_and_not_an_attempt(
        self, otp_service, code_store, mock_email, code
    ):
        await otp_service.request_otp(_EMAIL)

        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.verify_otp(_EMAIL, code)

        assert exc_info.value.message == "Invalid code format"
        assert code_store.records[_EMAIL_HASH].attempts == 0

    async def test_malformed_email_is_invalid_argument(self, otp_service):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.verify_otp("nope", "123456")

        assert exc_info.value.message == "Invalid email format"

    async def test_address_too_long_to_store_is_invalid_argument(
        self, otp_service, identity_store
    ):
        email = "a" * 65 + "@example.com"

        with pytest.raises(InvalidArgumentError) as exc_info:
            await otp_service.verify_otp(email, "123456")

        assert exc_info.value.message == "Invalid email format"
        assert identity_store.users == {}

    async def test_64_character_local_part_gets_a_storable_username(
        self, otp_service, identity_store, mock_email
    ):
        email = "a" * 64 + "@example.com"
        await otp_service.request_otp(email)

        result = await otp_service.verify_otp(email, mock_email.last_code_for(email))

        assert result.user.email == email
        assert len(result.user.username) <= 64


class TestIdentityResolution:
    async def test_new_user_gets_username_and_unusable_password(
        self, otp_service, identity_store, mock_email
    ):
        await otp_service.request_otp("Jane.Doe@b.com")

        result = await otp_service.verify_otp(
            "jane.doe@b.com", mock_email.last_code_for("jane.doe@b.com")
        )

        assert result.user.username.startswith("janedoe")
        assert identity_store.password_hashes[result.user.id].startswith("$2b$")

    async def test_existing_user_gets_new_session(
        self, otp_service, identity_store, mock_email
    ):
        existing = identity_store.add_user(
            username="jane", email=_EMAIL, full_name="Jane", total_gigs=12
        )
        await otp_service.request_otp(_EMAIL)

        result = await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        assert result.is_new_user is False
        assert result.user == existing
        assert await identity_store.get_by_session_token(result.session_token) == (
            existing
        )

    async def test_session_lasts_a_year(self, otp_service, mock_email, clock):
        await otp_service.request_otp(_EMAIL)
        result = await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        clock.advance(timedelta(days=364))
        assert await otp_service.validate_session(result.session_token) is not None

        clock.advance(timedelta(days=1))
        assert await otp_service.validate_session(result.session_token) is None

    async def test_taken_username_is_regenerated(
        self, otp_service, identity_store, mock_email, monkeypatch
    ):
        identity_store.taken_usernames.update({"ab0000", "ab1111"})
        candidates = iter(["ab0000", "ab1111", "ab2222"])
        monkeypatch.setattr(
            "app.services.otp_service.generate_username",
            lambda _email: next(candidates),
        )
        await otp_service.request_otp(_EMAIL)

        result = await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        assert result.user.username == "ab2222"

    async def test_account_creation_failure_is_internal_error(
        self, otp_service, identity_store, mock_email
    ):
        identity_store.failing.add("create_user")
        await otp_service.request_otp(_EMAIL)

        with pytest.raises(InternalError) as exc_info:
            await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        assert exc_info.value.message == "Failed to create account. Please try again."
        assert identity_store.users == {}

    async def test_session_creation_failure_is_internal_error(
        self, otp_service, identity_store, mock_email
    ):
        identity_store.add_user(username="jane", email=_EMAIL)
        identity_store.failing.add("mint_session")
        await otp_service.request_otp(_EMAIL)

        with pytest.raises(InternalError) as exc_info:
            await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        assert exc_info.value.message == "Failed to create session. Please try again."

    async def test_lookup_failure_is_internal_error(
        self, otp_service, identity_store, mock_email
    ):
        await otp_service.request_otp(_EMAIL)
        identity_store.failing.add("get_by_email")

        with pytest.raises(InternalError):
            await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))


# =============================================================================
# Sessions
# =============================================================================


class TestSessions:
    async def test_validate_session_returns_user(self, otp_service, mock_email):
        await otp_service.request_otp(_EMAIL)
        result = await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        user = await otp_service.validate_session(result.session_token)

        assert user == result.user

    @pytest.mark.parametrize("token", [None, "", "r:" + "0" * 64])
    async def test_unknown_or_missing_token_is_none(self, otp_service, token):
        assert await otp_service.validate_session(token) is None

    async def test_logout_revokes_token(self, otp_service, mock_email):
        await otp_service.request_otp(_EMAIL)
        result = await otp_service.verify_otp(_EMAIL, mock_email.last_code_for(_EMAIL))

        await otp_service.logout(result.session_token)

        assert await otp_service.validate_session(result.session_token) is None

    async def test_logout_of_unknown_token_is_a_no_op(self, otp_service):
        await otp_service.logout("r:unknown")
        await otp_service.logout(None)

    async def test_store_failure_is_internal_error(self, otp_service, identity_store):
        identity_store.failing.update({"get_by_session_token", "revoke_session"})

        with pytest.raises(InternalError):
            await otp_service.validate_session("r:abc")
        with pytest.raises(InternalError):
            await otp_service.logout("r:abc")


# =============================================================================
# Policy and providers
# =============================================================================


class TestOTPPolicy:
    def test_defaults(self):
        policy = OTPPolicy()

        assert policy.code_ttl == timedelta(minutes=10)
        assert policy.max_attempts == 5
        assert (policy.email_limit.limit, policy.email_limit.window) == (
            5,
            timedelta(hours=1),
        )
        assert (policy.ip_limit.limit, policy.ip_limit.window) == (
            10,
            timedelta(hours=1),
        )
        assert (policy.resend_limit.limit, policy.resend_limit.window) == (
            3,
            timedelta(minutes=10),
        )
        assert policy.session_ttl == timedelta(days=365)

    def test_from_settings(self):
        custom = Settings(
            otp_expiry_minutes=5,
            otp_max_attempts=3,
            otp_rate_limit_email_per_hour=2,
            otp_rate_limit_ip_per_hour=4,
            otp_rate_limit_resend_per_10min=1,
            session_expiry_days=30,
        )

        policy = OTPPolicy.from_settings(custom)

        assert policy.code_ttl == timedelta(minutes=5)
        assert policy.max_attempts == 3
        assert policy.email_limit.limit == 2
        assert policy.ip_limit.limit == 4
        assert policy.resend_limit.limit == 1
        assert policy.session_ttl == timedelta(days=30)

    async def test_custom_policy_is_applied(
        self, code_store, rate_limit_store, identity_store, mock_email, clock
    ):
        service = OTPService(
            codes=code_store,
            rate_limits=rate_limit_store,
            identities=identity_store,
            email_provider=mock_email,
            policy=OTPPolicy(code_ttl=timedelta(minutes=1), max_attempts=2),
            clock=clock,
        )

        result = await service.request_otp(_EMAIL)
        wrong = _wrong_code(mock_email.last_code_for(_EMAIL))
        for _ in range(2):
            with pytest.raises(NotFoundError):
                await service.verify_otp(_EMAIL, wrong)

        assert result.expires_in == 60
        assert code_store.records == {}


class TestAuthProviders:
    def _user(self, **fields) -> UserIdentity:
        return UserIdentity(id=uuid.uuid4(), username="u", **fields)

    def test_email_only_user(self):
        assert auth_providers(self._user(email=_EMAIL)) == ["otp", "password"]

    def test_apple_linked_user_with_email(self):
        user = self._user(email=_EMAIL, linked_providers=("apple",))
        assert auth_providers(user) == ["apple", "otp"]

    def test_apple_only_user(self):
        user = self._user(email=None, linked_providers=("apple",))
        assert auth_providers(user) == ["apple"]

    def test_other_linked_provider_suppresses_password(self):
        user = self._user(email=_EMAIL, linked_providers=("google",))
        assert auth_providers(user) == ["otp"]


class TestDeliveryErrorTypes:
    @pytest.mark.parametrize(
        "error", [AuthenticationError("bad key"), TransientError("timeout")]
    )
    async def test_provider_errors_never_reach_caller(
        self, otp_service, mock_email, error
    ):
        mock_email.fail_with = error

        result = await otp_service.request_otp(_EMAIL)

        assert result.expires_in == 600
