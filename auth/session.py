"""Session lifecycle management.

Sessions are stored in Valkey as JSON with a TTL covering their expiry, plus
a per-user set of tokens for bulk termination. Token format is
cryptographically random (secrets.token_urlsafe).

A session is valid only while it is active AND unexpired. Both are checked
on every read against the injected clock; the Valkey TTL is cleanup, not
the source of truth.
"""

import logging
import math
import secrets
from datetime import timedelta
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import DeviceInfo, Session
from auth.exceptions import SessionExpiredError
from utils.timezone import Clock, now_utc

logger = logging.getLogger(__name__)


class SessionManager:
    """Session token lifecycle with sliding expiry.

    Every successful touch pushes expires_at to now + extension window.
    """

    KEY_PREFIX = "session:"
    USER_KEY_PREFIX = "user_sessions:"
    TOUCH_ATTEMPTS = 3

    def __init__(self, valkey: ValkeyClient, config: AuthConfig, clock: Clock = now_utc):
        self._valkey = valkey
        self._config = config
        self._clock = clock
        self._extension = timedelta(days=config.session_extension_days)

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def _user_key(self, user_id: UUID) -> str:
        return f"{self.USER_KEY_PREFIX}{user_id}"

    def _ttl(self, session: Session) -> int:
        remaining = (session.expires_at - self._clock()).total_seconds()
        return max(math.ceil(remaining), 1)

    def _save(self, session: Session) -> None:
        self._valkey.set_json(
            self._key(session.token),
            session.model_dump(mode="json"),
            expire_seconds=self._ttl(session),
        )

    def _load(self, token: str) -> Session | None:
        data = self._valkey.get_json(self._key(token))
        if data is None:
            return None
        return Session.model_validate(data)

    def create(self, user_id: UUID, device: DeviceInfo | None = None) -> Session:
        """Open a session expiring one extension window from now."""
        now = self._clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            device=device or DeviceInfo(),
            is_active=True,
            created_at=now,
            last_activity_at=now,
            expires_at=now + self._extension,
        )

        self._save(session)
        user_key = self._user_key(user_id)
        self._valkey.sadd(user_key, session.token)
        self._valkey.expire(user_key, int(self._extension.total_seconds()))

        return session

    def get(self, token: str) -> Session | None:
        """Stored session without sliding it, valid or not."""
        return self._load(token)

    def touch(self, token: str) -> Session:
        """Validate a session and slide its expiry forward.

        The slide is a compare-and-set against the stored JSON, so a
        terminate landing between the read and the write wins: the retry
        reads the terminated session and raises.

        Raises:
            SessionExpiredError: Missing, terminated or past expires_at.
        """
        key = self._key(token)
        for _ in range(self.TOUCH_ATTEMPTS):
            stored = self._valkey.get_json(key)
            if stored is None:
                raise SessionExpiredError("Session not found or expired")
            session = Session.model_validate(stored)

            now = self._clock()
            if not session.is_active:
                raise SessionExpiredError("Session was terminated")
            if now >= session.expires_at:
                self._valkey.delete(key)
                self._valkey.srem(self._user_key(session.user_id), token)
                raise SessionExpiredError("Session expired")

            updated = session.model_copy(update={
                "last_activity_at": now,
                "expires_at": now + self._extension,
            })
            if self._valkey.replace_json_if_unchanged(
                key,
                stored,
                updated.model_dump(mode="json"),
                expire_seconds=self._ttl(updated),
            ):
                self._valkey.expire(self._user_key(session.user_id), int(self._extension.total_seconds()))
                return updated

        # Concurrent touches kept winning; the session was valid on the last read
        logger.warning("Session slide for user %s gave up after %d attempts", session.user_id, self.TOUCH_ATTEMPTS)
        return session

    def terminate(self, token: str) -> bool:
        """Deactivate a session (logout).

        Safe to call with a nonexistent token.

        Returns:
            True if an active session was terminated.
        """
        session = self._load(token)
        if session is None:
            return False

        self._valkey.srem(self._user_key(session.user_id), token)
        if not session.is_active:
            return False

        if self._clock() >= session.expires_at:
            self._valkey.delete(self._key(token))
            return False

        self._save(session.model_copy(update={"is_active": False}))
        return True

    def terminate_all(self, user_id: UUID) -> int:
        """Terminate every session of a user. Returns how many were active."""
        user_key = self._user_key(user_id)
        terminated = 0
        for token in self._valkey.smembers(user_key):
            if self.terminate(token):
                terminated += 1
        self._valkey.delete(user_key)

        logger.info("Terminated %d sessions for user %s", terminated, user_id)
        return terminated

    def list_active(self, user_id: UUID) -> list[Session]:
        """Valid sessions of a user, most recently active first."""
        user_key = self._user_key(user_id)
        now = self._clock()
        sessions = []
        for token in self._valkey.smembers(user_key):
            session = self._load(token)
            if session is None or not session.is_valid(now):
                self._valkey.srem(user_key, token)
                continue
            sessions.append(session)

        sessions.sort(key=lambda s: s.last_activity_at, reverse=True)
        return sessions
