"""Rate limiting for verification code issuance.

Counts issued records for (email, purpose) in a trailing window. The records
themselves are the counter, so there is no separate key to drift out of sync.
"""

import math
from datetime import timedelta

from auth.config import AuthConfig
from auth.exceptions import RateLimitExceededError
from auth.types import VerificationPurpose
from auth.verification_store import VerificationStore
from utils.timezone import Clock, now_utc


class RateLimiter:
    """Bounds code issuance per email and purpose."""

    def __init__(self, store: VerificationStore, config: AuthConfig, clock: Clock = now_utc):
        self._store = store
        self._config = config
        self._clock = clock

    def check(
        self,
        email: str,
        purpose: VerificationPurpose,
        window_minutes: int | None = None,
        max_requests: int | None = None,
    ) -> None:
        """Raise if another code may not be issued yet.

        Must run before any write of the issuance.

        Raises:
            RateLimitExceededError: With seconds until the oldest record in
                the window ages out (at least 1).
        """
        window = timedelta(minutes=window_minutes or self._config.rate_limit_window_minutes)
        limit = max_requests or self._config.rate_limit_max_requests

        now = self._clock()
        since = now - window

        count = self._store.count_recent(email, purpose, since)
        if count < limit:
            return

        oldest = self._store.oldest_recent(email, purpose, since)
        if oldest is None:
            retry_after = int(window.total_seconds())
        else:
            retry_after = math.ceil((oldest + window - now).total_seconds())
        raise RateLimitExceededError(retry_after_seconds=max(retry_after, 1))

    def remaining(self, email: str, purpose: VerificationPurpose) -> int:
        """How many more codes the current window allows."""
        since = self._clock() - timedelta(minutes=self._config.rate_limit_window_minutes)
        count = self._store.count_recent(email, purpose, since)
        return max(self._config.rate_limit_max_requests - count, 0)
