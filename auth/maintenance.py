"""Periodic cleanup of auth tables.

Run from cron or a one-off job; nothing here schedules itself.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from auth.config import AuthConfig
from auth.security_logger import SecurityLogger
from auth.verification_store import VerificationStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    codes_deleted: int
    events_archived: int


def run_cleanup(
    config: AuthConfig,
    store: VerificationStore,
    security_logger: SecurityLogger,
    archive_path: Path,
) -> CleanupReport:
    """Delete stale verification codes and archive old security events.

    Expired codes are kept for one rate-limit window past expiry so the
    limiter still counts them.
    """
    codes_deleted = store.expire_stale(retain_minutes=config.rate_limit_window_minutes)
    events_archived = security_logger.rotate_logs(
        older_than_days=config.security_log_retention_days,
        output_path=archive_path,
    )

    logger.info(
        "Auth cleanup: %d codes deleted, %d security events archived",
        codes_deleted,
        events_archived,
    )
    return CleanupReport(codes_deleted=codes_deleted, events_archived=events_archived)
