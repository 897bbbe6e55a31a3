"""Security events for abuse monitoring.

Rows go to the security_events table (no RLS: most events happen before
a reader is known). Old rows are archived to a JSON-lines file and then
deleted by the maintenance job.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

from psycopg2.extras import Json
from pydantic import BaseModel, field_validator

from clients.postgres_client import PostgresClient
from utils.timezone import Clock, ensure_utc, now_utc

logger = logging.getLogger(__name__)

_COLUMNS = "id, event_type, email, user_id, ip_address, user_agent, details, created_at"


class SecurityEvent(Enum):
    """What happened."""

    CODE_REQUESTED = "code_requested"
    CODE_SENT = "code_sent"
    CODE_VERIFIED = "code_verified"
    CODE_FAILED = "code_failed"
    CODE_LOCKED = "code_locked"
    RATE_LIMITED = "rate_limited"
    USER_CREATED = "user_created"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    SESSION_CREATED = "session_created"
    SESSION_TERMINATED = "session_terminated"
    SESSIONS_TERMINATED_ALL = "sessions_terminated_all"
    USER_DEACTIVATED = "user_deactivated"
    USER_ACTIVATED = "user_activated"


class SecurityEventRecord(BaseModel):
    """One stored event."""

    id: UUID
    event_type: str
    email: str | None = None
    user_id: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime

    @field_validator("ip_address", mode="before")
    @classmethod
    def _inet_to_str(cls, value):
        # psycopg2 hands back inet columns as ipaddress objects
        return str(value) if value is not None else None

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SecurityLogger:
    """Writes, queries and archives security events."""

    def __init__(self, postgres: PostgresClient, clock: Clock = now_utc):
        self._db = postgres
        self._clock = clock

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._db.execute_returning(
            """INSERT INTO security_events
               (event_type, email, user_id, ip_address, user_agent, details, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               RETURNING id""",
            (
                event.value,
                email,
                str(user_id) if user_id else None,
                ip_address,
                user_agent,
                Json(details) if details else None,
                self._clock(),
            ),
        )

    @staticmethod
    def _filters(
        email: str | None,
        user_id: UUID | None,
        ip_address: str | None,
        event_type: SecurityEvent | None,
        since: datetime | None,
    ) -> tuple[str, list]:
        conditions = []
        params: list = []

        if email:
            conditions.append("email = lower(%s)")
            params.append(email)
        if user_id:
            conditions.append("user_id = %s")
            params.append(str(user_id))
        if ip_address:
            conditions.append("ip_address = %s")
            params.append(ip_address)
        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type.value)
        if since:
            conditions.append("created_at >= %s")
            params.append(since)

        return (" AND ".join(conditions) if conditions else "1=1"), params

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[SecurityEventRecord]:
        """Matching events, newest first. Filters combine with AND."""
        where_clause, params = self._filters(email, user_id, None, event_type, since)
        params.append(limit)

        rows = self._db.execute(
            f"""SELECT {_COLUMNS}
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s""",
            tuple(params),
        )
        return [SecurityEventRecord.model_validate(row) for row in rows]

    def count_events(
        self,
        event_type: SecurityEvent,
        window: timedelta,
        email: str | None = None,
        ip_address: str | None = None,
    ) -> int:
        """
        How many events of one type happened in the trailing window.

        For abuse checks such as failed logins from one address in the
        last hour.
        """
        since = self._clock() - window
        where_clause, params = self._filters(email, None, ip_address, event_type, since)
        count = self._db.execute_scalar(
            f"SELECT COUNT(*) FROM security_events WHERE {where_clause}",
            tuple(params),
        )
        return int(count or 0)

    def rotate_logs(self, older_than_days: int, output_path: Path) -> int:
        """Archive old events to file and delete them from the database.

        Args:
            older_than_days: Archive events older than this many days
            output_path: JSON-lines file, appended to

        Returns:
            Number of events archived and deleted
        """
        cutoff = self._clock() - timedelta(days=older_than_days)

        rows = self._db.execute(
            f"""SELECT {_COLUMNS}
                FROM security_events
                WHERE created_at < %s
                ORDER BY created_at ASC""",
            (cutoff,),
        )
        if not rows:
            return 0

        records = [SecurityEventRecord.model_validate(row) for row in rows]
        with open(output_path, "a") as f:
            for record in records:
                f.write(record.model_dump_json() + "\n")

        # Only delete what was archived
        self._db.execute_returning(
            "DELETE FROM security_events WHERE id = ANY(%s::uuid[]) RETURNING id",
            ([str(record.id) for record in records],),
        )

        logger.info("Archived %d security events to %s", len(records), output_path)
        return len(records)
