"""Shared test fixtures for the TalePick account test suite."""

import itertools
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import fakeredis
import pytest

from auth.codes import generate_code
from auth.config import AuthConfig
from auth.exceptions import AccountExistsError, AlreadyUsedError, AttemptsExhaustedError
from auth.types import User, VerificationCode, VerificationMetadata
from clients.secrets_client import reset_settings_cache
from clients.valkey_client import ValkeyClient
from core.credits import BASE_MAX_CREDITS
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Primary test user - use for single-user tests
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "reader@talepick.app"

# Secondary test user - use for isolation tests
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")
TEST_USER_B_EMAIL = "reader-b@talepick.app"

# Every clock-driven test starts here
START_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# FAKES
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class InMemoryVerificationStore:
    """
    Dict-backed VerificationStore.

    Same preconditions as the SQL: record_attempt and mark_used only
    touch a record that is still pending, and raise otherwise.
    """

    def __init__(self, clock, code_generator=generate_code):
        self.records: dict[UUID, VerificationCode] = {}
        self._clock = clock
        self._generate_code = code_generator

    def _newest_first(self, email, purpose):
        email = email.lower().strip()
        matches = [r for r in self.records.values() if r.email == email and r.purpose == purpose]
        return list(reversed(matches))

    def issue(self, email, purpose, ip_address=None, user_agent=None, metadata=None,
              ttl_minutes=10, user_id=None, max_attempts=3):
        email = email.lower().strip()
        self.invalidate_previous(email, purpose)
        now = self._clock()
        record = VerificationCode(
            id=uuid4(),
            email=email,
            purpose=purpose,
            code=self._generate_code(),
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=metadata or VerificationMetadata(),
            user_id=user_id,
        )
        self.records[record.id] = record
        return record

    def find_valid(self, email, code, purpose):
        now = self._clock()
        for record in self._newest_first(email, purpose):
            if record.code == code and record.is_valid(now):
                return record
        return None

    def find_pending(self, email, purpose):
        now = self._clock()
        for record in self._newest_first(email, purpose):
            if record.is_valid(now):
                return record
        return None

    def find_open(self, email, purpose):
        now = self._clock()
        for record in self._newest_first(email, purpose):
            if not record.is_used() and not record.is_expired(now):
                return record
        return None

    def record_attempt(self, record_id):
        record = self.records.get(record_id)
        if record is None or not record.is_valid(self._clock()):
            raise AttemptsExhaustedError(f"No attempts left on {record_id}")
        updated = record.model_copy(update={"attempts": record.attempts + 1})
        self.records[record_id] = updated
        return updated

    def mark_used(self, record_id):
        now = self._clock()
        record = self.records.get(record_id)
        if record is None or not record.is_valid(now):
            raise AlreadyUsedError(f"Code {record_id} is no longer usable")
        updated = record.model_copy(update={"used_at": now})
        self.records[record_id] = updated
        return updated

    def invalidate_previous(self, email, purpose):
        now = self._clock()
        count = 0
        for record in self._newest_first(email, purpose):
            if not record.is_used() and not record.is_expired(now):
                self.records[record.id] = record.model_copy(update={"used_at": now})
                count += 1
        return count

    def count_recent(self, email, purpose, since):
        return sum(1 for r in self._newest_first(email, purpose) if r.created_at >= since)

    def oldest_recent(self, email, purpose, since):
        times = [r.created_at for r in self._newest_first(email, purpose) if r.created_at >= since]
        return min(times) if times else None

    def expire_stale(self, retain_minutes=0):
        cutoff = self._clock() - timedelta(minutes=retain_minutes)
        stale = [rid for rid, r in self.records.items() if r.expires_at <= cutoff]
        for rid in stale:
            del self.records[rid]
        return len(stale)


class InMemoryUserStore:
    """Dict-backed UserStore."""

    def __init__(self, clock):
        self.users: dict[UUID, User] = {}
        self._clock = clock

    def get_user_by_email(self, email):
        email = email.lower().strip()
        return next((u for u in self.users.values() if u.email == email), None)

    def get_user_by_id(self, user_id):
        return self.users.get(user_id)

    def email_or_username_taken(self, email, username):
        email = email.lower().strip()
        return any(
            u.email == email or u.username.lower() == username.lower()
            for u in self.users.values()
        )

    def create_user(self, email, username, password_hash, display_name=None,
                    email_verified=True, initial_credits=BASE_MAX_CREDITS):
        if self.email_or_username_taken(email, username):
            raise AccountExistsError("An account with these details already exists")
        now = self._clock()
        user = User(
            id=uuid4(),
            email=email.lower().strip(),
            username=username,
            display_name=display_name or username,
            password_hash=password_hash,
            email_verified=email_verified,
            credits=initial_credits,
            max_credits=BASE_MAX_CREDITS,
            last_credit_refill=now,
            created_at=now,
        )
        self.users[user.id] = user
        return user

    def _update(self, user_id, **fields):
        user = self.users.get(user_id)
        if user is None:
            return False
        self.users[user_id] = user.model_copy(update=fields)
        return True

    def update_password(self, user_id, password_hash):
        return self._update(user_id, password_hash=password_hash)

    def update_last_login(self, user_id):
        self._update(user_id, last_login_at=self._clock())

    def deactivate_user(self, user_id):
        return self._update(user_id, is_active=False)

    def activate_user(self, user_id):
        return self._update(user_id, is_active=True)


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture(autouse=True)
def reset_settings():
    """Settings are cached per process; drop them around each test."""
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    """The secondary test user's ID (for isolation tests)."""
    return TEST_USER_B_ID


@pytest.fixture
def authenticated_context(test_user_id):
    """Provide an authenticated user context for the primary test user."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# CLOCK, CONFIG & STORE FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock starting at START_TIME."""
    return FakeClock(START_TIME)


@pytest.fixture
def config() -> AuthConfig:
    """Default auth config (10 minute codes, 3 attempts, 5 per hour, 7 day sessions)."""
    return AuthConfig()


@pytest.fixture
def verification_store(clock) -> InMemoryVerificationStore:
    """In-memory store handing out 123456, 123457, ... so "000000" is always wrong."""
    counter = itertools.count(123456)
    return InMemoryVerificationStore(clock, code_generator=lambda: f"{next(counter):06d}")


@pytest.fixture
def user_store(clock) -> InMemoryUserStore:
    return InMemoryUserStore(clock)


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture
def valkey():
    """ValkeyClient over an in-process fake server, fresh per test."""
    client = ValkeyClient(client=fakeredis.FakeRedis(decode_responses=True))
    yield client
    client.close()
