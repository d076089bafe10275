import ast
import inspect
import socket
import textwrap
import uuid
from collections.abc import AsyncGenerator, Iterator
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.core.otp_crypto import generate_session_token, hash_sha256
from app.models.base import Base
from app.providers import factory
from app.providers.email.mock_adapter import MockEmailProvider
from app.services.otp_service import OTPPolicy, OTPService
from app.services.otp_stores import (
    IdentityStoreError,
    OTPRecord,
    RateLimitKind,
    RateLimitRecord,
    UserIdentity,
)
from app.services.password_auth import PasswordAuthService

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Fixed starting point for the frozen clock
CLOCK_START = datetime(2026, 3, 14, 19, 30, tzinfo=UTC)


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# =============================================================================
# In-memory stores
# =============================================================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = CLOCK_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeOTPCodeStore:
    """OTPCodeStore over a dict keyed by e-mail hash."""

    def __init__(self) -> None:
        self.records: dict[str, OTPRecord] = {}

    async def get(self, email_hash: str) -> OTPRecord | None:
        return self.records.get(email_hash)

    async def put(self, record: OTPRecord) -> None:
        self.records[record.email_hash] = record

    async def delete(self, email_hash: str) -> None:
        self.records.pop(email_hash, None)

    async def consume(self, email_hash: str, code_hash: str) -> bool:
        record = self.records.get(email_hash)
        if record is None or record.code_hash != code_hash:
            return False
        del self.records[email_hash]
        return True

    async def increment_attempts(self, email_hash: str) -> int | None:
        record = self.records.get(email_hash)
        if record is None:
            return None
        updated = replace(record, attempts=record.attempts + 1)
        self.records[email_hash] = updated
        return updated.attempts


class FakeRateLimitStore:
    """RateLimitStore over a list of counters."""

    def __init__(self) -> None:
        self.records: list[RateLimitRecord] = []

    def count_for(self, identifier_hash: str, kind: RateLimitKind) -> int:
        """Sum of counters for an identifier across all windows."""
        return sum(
            r.count
            for r in self.records
            if r.identifier_hash == identifier_hash and r.kind == kind
        )

    async def find_active(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        window_opened_after: datetime,
    ) -> RateLimitRecord | None:
        open_windows = [
            r
            for r in self.records
            if r.identifier_hash == identifier_hash
            and r.kind == kind
            and r.window_start > window_opened_after
        ]
        if not open_windows:
            return None
        return max(open_windows, key=lambda r: r.window_start)

    async def create(
        self,
        identifier_hash: str,
        kind: RateLimitKind,
        window_start: datetime,
    ) -> RateLimitRecord:
        record = RateLimitRecord(
            id=uuid.uuid4(),
            identifier_hash=identifier_hash,
            kind=kind,
            count=1,
            window_start=window_start,
        )
        self.records.append(record)
        return record

    async def increment_if_below(self, record: RateLimitRecord, limit: int) -> bool:
        for i, stored in enumerate(self.records):
            if stored.id == record.id:
                if stored.count >= limit:
                    return False
                self.records[i] = replace(stored, count=stored.count + 1)
                return True
        return False


class FakeIdentityStore:
    """IdentityStore over dicts.

    Attributes:
        sessions: token hash -> (user id, expiry, sign-in method).
        failing: Method names that raise IdentityStoreError when called.
        taken_usernames: Usernames reported as unavailable.
    """

    def __init__(self, clock: FrozenClock) -> None:
        self._clock = clock
        self.users: dict[uuid.UUID, UserIdentity] = {}
        self.sessions: dict[str, tuple[uuid.UUID, datetime, str]] = {}
        self.password_hashes: dict[uuid.UUID, str] = {}
        self.email_verified_at: dict[uuid.UUID, datetime | None] = {}
        self.failing: set[str] = set()
        self.taken_usernames: set[str] = set()

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise IdentityStoreError(f"{name} failed")

    def add_user(self, password_hash: str | None = None, **fields) -> UserIdentity:
        """Insert a user directly (test setup)."""
        fields.setdefault("id", uuid.uuid4())
        fields.setdefault("username", "existing")
        user = UserIdentity(**fields)
        self.users[user.id] = user
        self.taken_usernames.add(user.username)
        if password_hash is not None:
            self.password_hashes[user.id] = password_hash
        return user

    def _new_session(
        self, user_id: uuid.UUID, ttl: timedelta, auth_provider: str
    ) -> str:
        plain, token_hash = generate_session_token()
        self.sessions[token_hash] = (user_id, self._clock() + ttl, auth_provider)
        return plain

    def _active_session(self, token: str) -> tuple[uuid.UUID, datetime, str] | None:
        entry = self.sessions.get(hash_sha256(token))
        if entry is None or entry[1] <= self._clock():
            return None
        return entry

    def sessions_of(self, user_id: uuid.UUID) -> int:
        """Number of stored sessions belonging to a user."""
        return sum(1 for entry in self.sessions.values() if entry[0] == user_id)

    async def get_by_email(self, email: str) -> UserIdentity | None:
        self._maybe_fail("get_by_email")
        return next((u for u in self.users.values() if u.email == email), None)

    async def username_available(self, username: str) -> bool:
        self._maybe_fail("username_available")
        return username not in self.taken_usernames

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
        self._maybe_fail("create_user")
        user = UserIdentity(id=uuid.uuid4(), username=username, email=email)
        self.users[user.id] = user
        self.password_hashes[user.id] = password_hash
        self.email_verified_at[user.id] = email_verified_at
        self.taken_usernames.add(username)
        return user, self._new_session(user.id, session_ttl, auth_provider)

    async def mint_session(
        self, user_id: uuid.UUID, ttl: timedelta, auth_provider: str = "otp"
    ) -> str:
        self._maybe_fail("mint_session")
        return self._new_session(user_id, ttl, auth_provider)

    async def get_by_session_token(self, token: str) -> UserIdentity | None:
        self._maybe_fail("get_by_session_token")
        entry = self._active_session(token)
        return None if entry is None else self.users.get(entry[0])

    async def get_session_provider(self, token: str) -> str | None:
        self._maybe_fail("get_session_provider")
        entry = self._active_session(token)
        return None if entry is None else entry[2]

    async def revoke_session(self, token: str) -> bool:
        self._maybe_fail("revoke_session")
        return self.sessions.pop(hash_sha256(token), None) is not None

    async def revoke_other_sessions(self, user_id: uuid.UUID, keep_token: str) -> int:
        self._maybe_fail("revoke_other_sessions")
        keep = hash_sha256(keep_token)
        doomed = [
            token_hash
            for token_hash, entry in self.sessions.items()
            if entry[0] == user_id and token_hash != keep
        ]
        for token_hash in doomed:
            del self.sessions[token_hash]
        return len(doomed)

    async def get_password_hash(self, user_id: uuid.UUID) -> str | None:
        self._maybe_fail("get_password_hash")
        return self.password_hashes.get(user_id)

    async def set_password_hash(self, user_id: uuid.UUID, password_hash: str) -> None:
        self._maybe_fail("set_password_hash")
        self.password_hashes[user_id] = password_hash


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    """Frozen clock shared by the service and the fake stores."""
    return FrozenClock()


@pytest.fixture
def code_store() -> FakeOTPCodeStore:
    return FakeOTPCodeStore()


@pytest.fixture
def rate_limit_store() -> FakeRateLimitStore:
    return FakeRateLimitStore()


@pytest.fixture
def identity_store(clock: FrozenClock) -> FakeIdentityStore:
    return FakeIdentityStore(clock)


@pytest.fixture
def mock_email() -> Iterator[MockEmailProvider]:
    """Mock email provider injected into the factory singleton.

    Yields:
        MockEmailProvider recording every code it is asked to send.
    """
    mock = MockEmailProvider()

    # Inject mock into factory singleton
    factory._email_provider = mock

    yield mock

    # Reset after test
    factory.reset_providers()


@pytest.fixture
def otp_service(
    code_store: FakeOTPCodeStore,
    rate_limit_store: FakeRateLimitStore,
    identity_store: FakeIdentityStore,
    mock_email: MockEmailProvider,
    clock: FrozenClock,
) -> OTPService:
    """OTPService over in-memory stores with the default policy."""
    return OTPService(
        codes=code_store,
        rate_limits=rate_limit_store,
        identities=identity_store,
        email_provider=mock_email,
        policy=OTPPolicy(),
        clock=clock,
    )


@pytest.fixture
def password_service(identity_store: FakeIdentityStore) -> PasswordAuthService:
    """PasswordAuthService over the same in-memory identity store."""
    return PasswordAuthService(identities=identity_store)


@pytest_asyncio.fixture
async def client(
    otp_service: OTPService, password_service: PasswordAuthService
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client whose services run on in-memory stores.

    Yields:
        AsyncClient bound to a fresh application instance.
    """
    from app.api.deps import get_otp_service, get_password_auth_service
    from app.main import create_app

    app = create_app()
    app.dependency_overrides[get_otp_service] = lambda: otp_service
    app.dependency_overrides[get_password_auth_service] = lambda: password_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable endpoint throttling during tests.

    Throttling is tested separately; disable for other tests to avoid
    flaky failures from limit triggers.

    Yields:
        None (autouse fixture).
    """
    from app.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled


# =============================================================================
# Test Antipattern Detection (warning-only)
# =============================================================================

_BANNED_FUNCTIONS = frozenset({"isinstance", "issubclass", "hasattr"})


def _find_antipatterns_in_source(source: str) -> list[str]:
    """Scan test function source for banned structural assertion patterns."""
    try:
        tree = ast.parse(textwrap.dedent(source))
    except SyntaxError:
        return []

    return [
        node.func.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _BANNED_FUNCTIONS
    ]


_antipattern_warnings: list[str] = []


def pytest_runtest_teardown(item: pytest.Item) -> None:
    """Check each test for antipattern usage after it runs."""
    obj = getattr(item, "obj", None)
    if not callable(obj):
        return
    try:
        source = inspect.getsource(obj)
    except (OSError, TypeError):
        return

    patterns = _find_antipatterns_in_source(source)
    if patterns:
        _antipattern_warnings.append(f"  {item.nodeid}: {', '.join(patterns)}")


def pytest_terminal_summary(
    terminalreporter: pytest.TerminalReporter,
) -> None:
    """Report test antipatterns at the end of the test session (warning only)."""
    if _antipattern_warnings:
        terminalreporter.section("test antipattern warnings")
        terminalreporter.line(
            "The following tests assert on structure instead of behavior."
        )
        terminalreporter.line("")
        for w in _antipattern_warnings:
            terminalreporter.line(w)
        _antipattern_warnings.clear()
