"""User account storage.

Uses the non-RLS users table: accounts are looked up during auth, before
a reader context is established.
"""

import logging
from uuid import UUID

from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient
from auth.exceptions import AccountExistsError
from auth.types import User
from core.credits import BASE_MAX_CREDITS
from utils.timezone import Clock, now_utc

logger = logging.getLogger(__name__)

_USER_COLUMNS = """id, email, username, display_name, password_hash, email_verified,
                   is_active, is_guest, credits, max_credits, last_credit_refill,
                   created_at, last_login_at"""


class UserStore:
    """Database operations for reader accounts."""

    def __init__(self, postgres: PostgresClient, clock: Clock = now_utc):
        self._db = postgres
        self._clock = clock

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email.strip(),),
        )
        return User.model_validate(row) if row else None

    def get_user_by_id(self, user_id: UUID) -> User | None:
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return User.model_validate(row) if row else None

    def email_or_username_taken(self, email: str, username: str) -> bool:
        """True if either is registered. Usernames compare case-insensitively."""
        count = self._db.execute_scalar(
            """SELECT COUNT(*) FROM users
               WHERE email = lower(%s) OR lower(username) = lower(%s)""",
            (email.strip(), username),
        )
        return bool(count)

    def create_user(
        self,
        email: str,
        username: str,
        password_hash: str,
        display_name: str | None = None,
        email_verified: bool = True,
        initial_credits: int = BASE_MAX_CREDITS,
    ) -> User:
        """Create a user (email lowercased) with a full credit balance.

        Raises:
            AccountExistsError: Email or username was taken in the meantime.
        """
        now = self._clock()
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users
                    (email, username, display_name, password_hash, email_verified,
                     credits, max_credits, last_credit_refill, created_at)
                    VALUES (lower(%s), %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}""",
                (
                    email.strip(),
                    username,
                    display_name or username,
                    password_hash,
                    email_verified,
                    initial_credits,
                    BASE_MAX_CREDITS,
                    now,
                    now,
                ),
            )
        except UniqueViolation:
            raise AccountExistsError("An account with these details already exists")

        user = User.model_validate(rows[0])
        logger.info("Created user %s", user.id)
        return user

    def update_password(self, user_id: UUID, password_hash: str) -> bool:
        """Returns False if the user doesn't exist."""
        rows = self._db.execute_returning(
            "UPDATE users SET password_hash = %s WHERE id = %s RETURNING id",
            (password_hash, user_id),
        )
        return len(rows) > 0

    def update_last_login(self, user_id: UUID) -> None:
        """Update last_login_at to current time."""
        self._db.execute_returning(
            "UPDATE users SET last_login_at = %s WHERE id = %s RETURNING id",
            (self._clock(), user_id),
        )

    def deactivate_user(self, user_id: UUID) -> bool:
        """Set user as inactive (login frozen).

        Returns:
            True if user was found and deactivated, False if not found.
        """
        rows = self._db.execute_returning(
            "UPDATE users SET is_active = false WHERE id = %s RETURNING id",
            (user_id,),
        )
        return len(rows) > 0

    def activate_user(self, user_id: UUID) -> bool:
        """Set user as active (login enabled).

        Returns:
            True if user was found and activated, False if not found.
        """
        rows = self._db.execute_returning(
            "UPDATE users SET is_active = true WHERE id = %s RETURNING id",
            (user_id,),
        )
        return len(rows) > 0
