"""Verification codes: issuing and checking.

CodeValidator is the state machine for a single submission. Every record is
pending until it becomes used, expired or max_attempts, and none of those
states can be left. VerificationService wraps issuance and validation with
rate limiting, email delivery and the security log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from auth.codes import codes_match
from auth.config import AuthConfig
from auth.exceptions import (
    AlreadyUsedError,
    AttemptsExhaustedError,
    InvalidOrExpiredCodeError,
    RateLimitExceededError,
    TooManyAttemptsError,
)
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import VerificationCode, VerificationMetadata, VerificationPurpose
from auth.verification_store import VerificationStore
from clients.email_client import EmailGatewayClient

logger = logging.getLogger(__name__)


@dataclass
class VerificationRequestResult:
    """Result of a code request."""

    sent: bool
    purpose: VerificationPurpose
    expires_at: datetime
    remaining_requests: int


@dataclass
class VerificationResult:
    """A consumed code and the payload it carried."""

    record: VerificationCode
    metadata: VerificationMetadata


class CodeValidator:
    """Checks one submitted code against the store."""

    def __init__(self, store: VerificationStore):
        self._store = store

    def validate(self, email: str, code: str, purpose: VerificationPurpose) -> VerificationCode:
        """
        Consume the pending code for (email, purpose) if `code` matches.

        Returns:
            The record, now used.

        Raises:
            InvalidOrExpiredCodeError: Wrong code, no live code, or the code
                went stale between lookup and consume.
            TooManyAttemptsError: The live code is out of attempts, including
                when this submission used the last one.
        """
        record = self._store.find_pending(email, purpose)

        if record is None:
            # An exhausted code is terminal but still unexpired and unused
            locked = self._store.find_open(email, purpose)
            if locked is not None and locked.is_exhausted():
                raise TooManyAttemptsError()
            raise InvalidOrExpiredCodeError()

        if not codes_match(record.code, code):
            try:
                updated = self._store.record_attempt(record.id)
            except AttemptsExhaustedError:
                raise TooManyAttemptsError()

            if updated.is_exhausted():
                raise TooManyAttemptsError()
            raise InvalidOrExpiredCodeError(remaining_attempts=updated.remaining_attempts())

        try:
            return self._store.mark_used(record.id)
        except AlreadyUsedError:
            raise InvalidOrExpiredCodeError()


class VerificationService:
    """Request and verify one-time codes.

    Handles:
    - Rate limiting per email and purpose
    - Issuance (previous live codes for the pair are invalidated)
    - Delivery by email
    - Validation with attempt counting
    - Security event logging
    """

    def __init__(
        self,
        config: AuthConfig,
        store: VerificationStore,
        rate_limiter: RateLimiter,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._store = store
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._security_logger = security_logger
        self._validator = CodeValidator(store)

    def request_code(
        self,
        email: str,
        purpose: VerificationPurpose,
        ip_address: str | None = None,
        user_agent: str | None = None,
        metadata: VerificationMetadata | None = None,
        user_id: UUID | None = None,
    ) -> VerificationRequestResult:
        """Issue a code and email it.

        Flow:
        1. Check rate limit (before anything is written)
        2. Invalidate live codes for the pair and store a new one
        3. Send email
        4. Log security events

        Raises:
            RateLimitExceededError: If too many codes were issued in the window.
            EmailGatewayError: If email send fails. The code stays issued.
        """
        email = email.lower().strip()

        try:
            self._rate_limiter.check(email, purpose)
        except RateLimitExceededError as e:
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"purpose": purpose.value, "retry_after_seconds": e.retry_after_seconds},
            )
            raise

        record = self._store.issue(
            email,
            purpose,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=metadata,
            ttl_minutes=self._config.code_expiry_minutes,
            user_id=user_id,
            max_attempts=self._config.max_attempts,
        )

        self._security_logger.log(
            SecurityEvent.CODE_REQUESTED,
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"purpose": purpose.value},
        )

        self._email_client.send_verification_code(
            email=email,
            code=record.code,
            purpose=purpose.value,
            expires_minutes=self._config.code_expiry_minutes,
        )

        self._security_logger.log(
            SecurityEvent.CODE_SENT,
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            details={"purpose": purpose.value},
        )

        return VerificationRequestResult(
            sent=True,
            purpose=purpose,
            expires_at=record.expires_at,
            remaining_requests=self._rate_limiter.remaining(email, purpose),
        )

    def verify_code(
        self,
        email: str,
        code: str,
        purpose: VerificationPurpose,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationResult:
        """Consume a submitted code.

        Raises:
            InvalidOrExpiredCodeError: Wrong, missing, used or expired code.
            TooManyAttemptsError: Attempt budget exhausted; request a new code.
        """
        email = email.lower().strip()

        try:
            record = self._validator.validate(email, code, purpose)
        except TooManyAttemptsError:
            self._security_logger.log(
                SecurityEvent.CODE_LOCKED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"purpose": purpose.value},
            )
            raise
        except InvalidOrExpiredCodeError as e:
            self._security_logger.log(
                SecurityEvent.CODE_FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"purpose": purpose.value, "remaining_attempts": e.remaining_attempts},
            )
            raise

        self._security_logger.log(
            SecurityEvent.CODE_VERIFIED,
            email=email,
            user_id=record.user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"purpose": purpose.value},
        )
        logger.info("Verified %s code %s", purpose.value, record.id)

        return VerificationResult(record=record, metadata=record.metadata)
