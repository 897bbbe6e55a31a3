"""Verification code records in Postgres.

Uses the non-RLS verification_codes table: codes are issued and checked
before any reader is known.

State changes that race (counting a wrong attempt, consuming a code) are
single conditional UPDATEs with the precondition in the WHERE clause. An
empty RETURNING means another request got there first.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from psycopg2.extras import Json

from auth.codes import generate_code
from auth.exceptions import AlreadyUsedError, AttemptsExhaustedError
from auth.types import VerificationCode, VerificationMetadata, VerificationPurpose
from clients.postgres_client import PostgresClient
from utils.timezone import Clock, ensure_utc, now_utc

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 10
DEFAULT_MAX_ATTEMPTS = 3
# verification_codes.user_agent CHECK limit
MAX_USER_AGENT_LENGTH = 1000

_COLUMNS = """id, email, purpose, code, attempts, max_attempts, used_at,
              created_at, expires_at, ip_address, user_agent, metadata, user_id"""


class VerificationStore:
    """Persistence for verification code records."""

    def __init__(
        self,
        postgres: PostgresClient,
        clock: Clock = now_utc,
        code_generator: Callable[[], str] = generate_code,
    ):
        self._db = postgres
        self._clock = clock
        self._generate_code = code_generator

    @staticmethod
    def _to_record(row: dict[str, Any]) -> VerificationCode:
        row = dict(row)
        for field in ("created_at", "expires_at", "used_at"):
            if row.get(field) is not None:
                row[field] = ensure_utc(row[field])
        if row.get("ip_address") is not None:
            row["ip_address"] = str(row["ip_address"])
        row["metadata"] = row.get("metadata") or {}
        return VerificationCode.model_validate(row)

    def issue(
        self,
        email: str,
        purpose: VerificationPurpose,
        ip_address: str | None = None,
        user_agent: str | None = None,
        metadata: VerificationMetadata | None = None,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        user_id: UUID | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> VerificationCode:
        """
        Invalidate live codes for (email, purpose) and store a fresh one.

        Invalidation and insert are separate statements; two concurrent
        issues can briefly leave two live codes for the same pair.
        The caller checks the rate limit first. Longer User-Agent headers
        are truncated to MAX_USER_AGENT_LENGTH.
        """
        email = email.lower().strip()
        if user_agent:
            user_agent = user_agent[:MAX_USER_AGENT_LENGTH]
        self.invalidate_previous(email, purpose)

        now = self._clock()
        metadata = metadata or VerificationMetadata()

        rows = self._db.execute_returning(
            f"""INSERT INTO verification_codes
                (email, purpose, code, attempts, max_attempts, created_at, expires_at,
                 ip_address, user_agent, metadata, user_id)
                VALUES (%s, %s, %s, 0, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}""",
            (
                email,
                purpose.value,
                self._generate_code(),
                max_attempts,
                now,
                now + timedelta(minutes=ttl_minutes),
                ip_address,
                user_agent,
                Json(metadata.model_dump(exclude_none=True)),
                user_id,
            ),
        )
        record = self._to_record(rows[0])
        logger.info("Issued %s code %s", purpose.value, record.id)
        return record

    def find_valid(
        self,
        email: str,
        code: str,
        purpose: VerificationPurpose,
    ) -> VerificationCode | None:
        """Record matching all three fields and valid right now. Read-only."""
        row = self._db.execute_single(
            f"""SELECT {_COLUMNS} FROM verification_codes
                WHERE email = lower(%s) AND purpose = %s AND code = %s
                  AND used_at IS NULL AND expires_at > %s AND attempts < max_attempts
                ORDER BY created_at DESC
                LIMIT 1""",
            (email.strip(), purpose.value, code, self._clock()),
        )
        return self._to_record(row) if row else None

    def find_pending(self, email: str, purpose: VerificationPurpose) -> VerificationCode | None:
        """Most recent record for the pair that is still pending."""
        row = self._db.execute_single(
            f"""SELECT {_COLUMNS} FROM verification_codes
                WHERE email = lower(%s) AND purpose = %s
                  AND used_at IS NULL AND expires_at > %s AND attempts < max_attempts
                ORDER BY created_at DESC
                LIMIT 1""",
            (email.strip(), purpose.value, self._clock()),
        )
        return self._to_record(row) if row else None

    def find_open(self, email: str, purpose: VerificationPurpose) -> VerificationCode | None:
        """Most recent unused, unexpired record for the pair, exhausted or not."""
        row = self._db.execute_single(
            f"""SELECT {_COLUMNS} FROM verification_codes
                WHERE email = lower(%s) AND purpose = %s
                  AND used_at IS NULL AND expires_at > %s
                ORDER BY created_at DESC
                LIMIT 1""",
            (email.strip(), purpose.value, self._clock()),
        )
        return self._to_record(row) if row else None

    def record_attempt(self, record_id: UUID) -> VerificationCode:
        """
        Count one wrong submission.

        Raises:
            AttemptsExhaustedError: Record is out of attempts, used or expired.
        """
        rows = self._db.execute_returning(
            f"""UPDATE verification_codes
                SET attempts = attempts + 1
                WHERE id = %s AND attempts < max_attempts
                  AND used_at IS NULL AND expires_at > %s
                RETURNING {_COLUMNS}""",
            (record_id, self._clock()),
        )
        if not rows:
            raise AttemptsExhaustedError(f"No attempts left on {record_id}")
        return self._to_record(rows[0])

    def mark_used(self, record_id: UUID) -> VerificationCode:
        """
        Consume a record.

        Raises:
            AlreadyUsedError: Record was already used, expired or exhausted.
                A retried call after success lands here too.
        """
        now = self._clock()
        rows = self._db.execute_returning(
            f"""UPDATE verification_codes
                SET used_at = %s
                WHERE id = %s AND used_at IS NULL
                  AND expires_at > %s AND attempts < max_attempts
                RETURNING {_COLUMNS}""",
            (now, record_id, now),
        )
        if not rows:
            raise AlreadyUsedError(f"Code {record_id} is no longer usable")
        return self._to_record(rows[0])

    def invalidate_previous(self, email: str, purpose: VerificationPurpose) -> int:
        """Mark every live record for the pair as used. Returns how many."""
        now = self._clock()
        rows = self._db.execute_returning(
            """UPDATE verification_codes
               SET used_at = %s
               WHERE email = lower(%s) AND purpose = %s
                 AND used_at IS NULL AND expires_at > %s
               RETURNING id""",
            (now, email.strip(), purpose.value, now),
        )
        return len(rows)

    def count_recent(self, email: str, purpose: VerificationPurpose, since: datetime) -> int:
        """Records created for the pair at or after `since`."""
        count = self._db.execute_scalar(
            """SELECT COUNT(*) FROM verification_codes
               WHERE email = lower(%s) AND purpose = %s AND created_at >= %s""",
            (email.strip(), purpose.value, since),
        )
        return int(count or 0)

    def oldest_recent(
        self,
        email: str,
        purpose: VerificationPurpose,
        since: datetime,
    ) -> datetime | None:
        """Creation time of the oldest record for the pair at or after `since`."""
        return self._db.execute_scalar(
            """SELECT MIN(created_at) FROM verification_codes
               WHERE email = lower(%s) AND purpose = %s AND created_at >= %s""",
            (email.strip(), purpose.value, since),
        )

    def expire_stale(self, retain_minutes: int = 0) -> int:
        """
        Delete records past expiry. Returns count deleted.

        retain_minutes keeps expired records that long after expiry, so the
        rate limiter's window still sees them.
        """
        cutoff = self._clock() - timedelta(minutes=retain_minutes)
        rows = self._db.execute_returning(
            "DELETE FROM verification_codes WHERE expires_at <= %s RETURNING id",
            (cutoff,),
        )
        if rows:
            logger.info("Deleted %d stale verification codes", len(rows))
        return len(rows)

    def get_recent(
        self,
        hours_back: int = 1,
        purpose: VerificationPurpose | None = None,
    ) -> list[VerificationCode]:
        """Records created in the last `hours_back` hours, newest first."""
        since = self._clock() - timedelta(hours=hours_back)
        if purpose is None:
            rows = self._db.execute(
                f"""SELECT {_COLUMNS} FROM verification_codes
                    WHERE created_at >= %s
                    ORDER BY created_at DESC""",
                (since,),
            )
        else:
            rows = self._db.execute(
                f"""SELECT {_COLUMNS} FROM verification_codes
                    WHERE created_at >= %s AND purpose = %s
                    ORDER BY created_at DESC""",
                (since, purpose.value),
            )
        return [self._to_record(row) for row in rows]

    def get_statistics(self, days_back: int = 7) -> list[dict[str, Any]]:
        """
        Per-purpose issuance summary for the last `days_back` days.

        Returns:
            One dict per purpose, busiest first: purpose, total_generated,
            total_used, total_expired, usage_rate and expiration_rate
            (percent), average_attempts, unique_email_count.
        """
        now = self._clock()
        rows = self._db.execute(
            """SELECT purpose,
                      COUNT(*) AS total_generated,
                      COUNT(*) FILTER (WHERE used_at IS NOT NULL) AS total_used,
                      COUNT(*) FILTER (WHERE expires_at < %s) AS total_expired,
                      AVG(attempts) AS average_attempts,
                      COUNT(DISTINCT email) AS unique_email_count
               FROM verification_codes
               WHERE created_at >= %s
               GROUP BY purpose
               ORDER BY total_generated DESC""",
            (now, now - timedelta(days=days_back)),
        )

        stats = []
        for row in rows:
            generated = int(row["total_generated"])
            used = int(row["total_used"])
            expired = int(row["total_expired"])
            stats.append({
                "purpose": row["purpose"],
                "total_generated": generated,
                "total_used": used,
                "total_expired": expired,
                "usage_rate": round(used / generated * 100, 2) if generated else 0.0,
                "expiration_rate": round(expired / generated * 100, 2) if generated else 0.0,
                "average_attempts": round(float(row["average_attempts"] or 0), 2),
                "unique_email_count": int(row["unique_email_count"]),
            })
        return stats
