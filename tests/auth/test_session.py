"""Tests for SessionManager - session token lifecycle with sliding expiry."""

from datetime import timedelta

import pytest

from auth.exceptions import SessionExpiredError
from auth.session import SessionManager
from auth.types import Browser, DeviceInfo, Platform


@pytest.fixture
def session_manager(valkey, config, clock):
    """SessionManager with a 7 day extension window and a fake clock."""
    return SessionManager(valkey, config, clock)


class TestCreate:
    """Test session creation."""

    def test_returns_session_with_token(self, session_manager, test_user_id):
        """Created session has a long random token."""
        session = session_manager.create(test_user_id)

        assert len(session.token) > 20
        assert session.user_id == test_user_id
        assert session.is_active is True

    def test_expires_one_window_from_now(self, session_manager, test_user_id, clock):
        session = session_manager.create(test_user_id)

        assert session.created_at == clock()
        assert session.last_activity_at == clock()
        assert session.expires_at == clock() + timedelta(days=7)

    def test_keeps_device(self, session_manager, test_user_id):
        device = DeviceInfo(user_agent="ua", ip_address="203.0.113.9", platform=Platform.MOBILE, browser=Browser.SAFARI)
        session = session_manager.create(test_user_id, device)

        assert session_manager.get(session.token).device == device

    def test_unique_tokens(self, session_manager, test_user_id, test_user_b_id):
        session_a = session_manager.create(test_user_id)
        session_b = session_manager.create(test_user_b_id)
        assert session_a.token != session_b.token

    def test_stored_with_ttl(self, session_manager, valkey, test_user_id):
        """Valkey TTL covers the session's lifetime."""
        session = session_manager.create(test_user_id)

        ttl = valkey.ttl(f"session:{session.token}")
        assert 7 * 86400 - 5 <= ttl <= 7 * 86400
        assert session.token in valkey.smembers(f"user_sessions:{test_user_id}")


class TestTouch:
    """Test validation with sliding expiry."""

    def test_touch_slides_from_touch_time(self, session_manager, test_user_id, clock):
        """Touch at day 6 pushes expiry to day 13, not day 7."""
        created = session_manager.create(test_user_id)

        clock.advance(days=6)
        touched = session_manager.touch(created.token)

        assert touched.last_activity_at == created.created_at + timedelta(days=6)
        assert touched.expires_at == created.created_at + timedelta(days=13)

    def test_slid_expiry_persisted(self, session_manager, test_user_id, clock):
        """The slid session survives past the original expiry."""
        created = session_manager.create(test_user_id)
        clock.advance(days=6)
        session_manager.touch(created.token)

        clock.advance(days=3)  # day 9: past the original day 7
        assert session_manager.touch(created.token).expires_at == created.created_at + timedelta(days=16)

    def test_missing_token_raises(self, session_manager):
        with pytest.raises(SessionExpiredError):
            session_manager.touch("no-such-token")

    def test_expired_session_raises_and_is_removed(self, session_manager, valkey, test_user_id, clock):
        """Expiry is judged by the clock; the stale key is cleaned up."""
        session = session_manager.create(test_user_id)
        clock.advance(days=7)

        with pytest.raises(SessionExpiredError):
            session_manager.touch(session.token)

        assert session_manager.get(session.token) is None
        assert session.token not in valkey.smembers(f"user_sessions:{test_user_id}")

    def test_terminated_session_raises(self, session_manager, test_user_id):
        """Inactive but unexpired is not valid."""
        session = session_manager.create(test_user_id)
        session_manager.terminate(session.token)

        with pytest.raises(SessionExpiredError):
            session_manager.touch(session.token)

    def test_terminate_during_touch_wins(self, session_manager, valkey, test_user_id, monkeypatch):
        """A password reset that ends every session between touch's read and write stays in force."""
        session = session_manager.create(test_user_id)
        read_json = valkey.get_json
        fired = []

        def get_json_then_terminate_all(key):
            data = read_json(key)
            if not fired:
                fired.append(key)
                session_manager.terminate_all(test_user_id)
            return data

        monkeypatch.setattr(valkey, "get_json", get_json_then_terminate_all)

        with pytest.raises(SessionExpiredError, match="terminated"):
            session_manager.touch(session.token)

        monkeypatch.undo()
        assert session_manager.get(session.token).is_active is False
        with pytest.raises(SessionExpiredError):
            session_manager.touch(session.token)

    def test_concurrent_touch_retries(self, session_manager, valkey, test_user_id, clock, monkeypatch):
        """Losing the slide to another touch re-reads and slides again."""
        session = session_manager.create(test_user_id)
        read_json = valkey.get_json
        fired = []

        def get_json_then_touch(key):
            data = read_json(key)
            if not fired:
                fired.append(key)
                clock.advance(hours=1)
                session_manager.touch(session.token)
            return data

        monkeypatch.setattr(valkey, "get_json", get_json_then_touch)

        touched = session_manager.touch(session.token)

        assert touched.is_active is True
        assert touched.last_activity_at == clock()
        assert session_manager.get(session.token).expires_at == clock() + timedelta(days=7)


class TestTerminate:
    """Test logout."""

    def test_terminate_returns_true_once(self, session_manager, test_user_id):
        session = session_manager.create(test_user_id)

        assert session_manager.terminate(session.token) is True
        assert session_manager.terminate(session.token) is False

    def test_terminated_session_kept_inactive(self, session_manager, test_user_id):
        """Termination flips the flag; the record stays readable until its TTL."""
        session = session_manager.create(test_user_id)
        session_manager.terminate(session.token)

        stored = session_manager.get(session.token)
        assert stored is not None
        assert stored.is_active is False

    def test_terminate_missing_token_is_safe(self, session_manager):
        assert session_manager.terminate("no-such-token") is False

    def test_terminate_expired_session(self, session_manager, test_user_id, clock):
        """Already-expired sessions are removed rather than counted."""
        session = session_manager.create(test_user_id)
        clock.advance(days=8)

        assert session_manager.terminate(session.token) is False
        assert session_manager.get(session.token) is None


class TestTerminateAll:
    """Test bulk termination."""

    def test_terminates_every_session_of_user(self, session_manager, test_user_id, test_user_b_id):
        first = session_manager.create(test_user_id)
        second = session_manager.create(test_user_id)
        other = session_manager.create(test_user_b_id)

        assert session_manager.terminate_all(test_user_id) == 2

        for token in (first.token, second.token):
            with pytest.raises(SessionExpiredError):
                session_manager.touch(token)
        session_manager.touch(other.token)

    def test_counts_only_active(self, session_manager, test_user_id):
        first = session_manager.create(test_user_id)
        session_manager.create(test_user_id)
        session_manager.terminate(first.token)

        assert session_manager.terminate_all(test_user_id) == 1

    def test_no_sessions(self, session_manager, test_user_id):
        assert session_manager.terminate_all(test_user_id) == 0


class TestListActive:
    """Test session listing."""

    def test_most_recent_first(self, session_manager, test_user_id, clock):
        older = session_manager.create(test_user_id)
        clock.advance(hours=1)
        newer = session_manager.create(test_user_id)
        clock.advance(hours=1)
        session_manager.touch(older.token)

        tokens = [s.token for s in session_manager.list_active(test_user_id)]
        assert tokens == [older.token, newer.token]

    def test_skips_terminated_and_expired(self, session_manager, valkey, test_user_id, clock):
        terminated = session_manager.create(test_user_id)
        session_manager.terminate(terminated.token)
        stale = session_manager.create(test_user_id)
        clock.advance(days=5)
        live = session_manager.create(test_user_id)
        clock.advance(days=3)  # stale is past day 7, live is at day 3

        assert [s.token for s in session_manager.list_active(test_user_id)] == [live.token]
        assert stale.token not in valkey.smembers(f"user_sessions:{test_user_id}")
