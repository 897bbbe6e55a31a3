"""Authentication service - orchestrates account flows on top of verification codes."""

import logging
from dataclasses import dataclass
from uuid import UUID

from auth.config import AuthConfig
from auth.database import UserStore
from auth.exceptions import (
    AccountExistsError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    RateLimitExceededError,
    UserInactiveError,
)
from auth.passwords import hash_password, verify_password
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.types import (
    AuthenticatedUser,
    DeviceInfo,
    Session,
    User,
    VerificationMetadata,
    VerificationPurpose,
)
from auth.verification import VerificationRequestResult, VerificationService

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    """Result of a password login.

    Either a session was opened, or a login_verification code was sent and
    the caller must finish with complete_login.
    """

    verification_required: bool
    authenticated: AuthenticatedUser | None = None
    verification: VerificationRequestResult | None = None


class AuthService:
    """Orchestrates reader account flows.

    Handles:
    - Registration (account created only once the email code is verified)
    - Password login, optionally followed by a login verification code
    - Password reset (with enumeration protection)
    - Logout and logout everywhere
    - Session validation
    """

    def __init__(
        self,
        config: AuthConfig,
        users: UserStore,
        session_manager: SessionManager,
        verification: VerificationService,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._users = users
        self._session_manager = session_manager
        self._verification = verification
        self._security_logger = security_logger

    def _open_session(self, user: User, device: DeviceInfo) -> AuthenticatedUser:
        """Create session, stamp last login, log it."""
        session = self._session_manager.create(user.id, device)
        self._users.update_last_login(user.id)

        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=user.email,
            user_id=user.id,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            details={"platform": device.platform.value, "browser": device.browser.value},
        )

        # Refresh user to get updated last_login_at
        user = self._users.get_user_by_id(user.id) or user
        return AuthenticatedUser(user=user, session=session)

    def start_registration(
        self,
        email: str,
        username: str,
        password: str,
        display_name: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationRequestResult:
        """Send a registration code. No account exists until it is verified.

        The password hash travels in the code's metadata.

        Raises:
            AccountExistsError: Email or username is taken (message doesn't say which).
            RateLimitExceededError: Too many registration codes for this email.
            EmailGatewayError: If email send fails.
        """
        email = email.lower().strip()

        if self._users.email_or_username_taken(email, username):
            raise AccountExistsError("An account with these details already exists")

        metadata = VerificationMetadata(
            username=username,
            password_hash=hash_password(password),
            display_name=display_name,
            source="email",
        )

        return self._verification.request_code(
            email,
            VerificationPurpose.REGISTRATION,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=metadata,
        )

    def complete_registration(self, email: str, code: str, device: DeviceInfo) -> AuthenticatedUser:
        """Verify the registration code, create the account and sign in.

        Raises:
            InvalidOrExpiredCodeError: Wrong, used or expired code.
            TooManyAttemptsError: Code locked; request a new one.
            AccountExistsError: Someone registered the email or username meanwhile.
        """
        email = email.lower().strip()
        result = self._verification.verify_code(
            email,
            code,
            VerificationPurpose.REGISTRATION,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
        )

        metadata = result.metadata
        if not metadata.username or not metadata.password_hash:
            logger.error("Registration code %s has no account payload", result.record.id)
            raise InvalidOrExpiredCodeError()

        user = self._users.create_user(
            email=email,
            username=metadata.username,
            password_hash=metadata.password_hash,
            display_name=metadata.display_name,
            email_verified=True,
        )

        self._security_logger.log(
            SecurityEvent.USER_CREATED,
            email=user.email,
            user_id=user.id,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            details={"source": metadata.source},
        )

        return self._open_session(user, device)

    def login(self, email: str, password: str, device: DeviceInfo) -> LoginResult:
        """Check a password and sign in (or send a login code).

        Raises:
            InvalidCredentialsError: Unknown email or wrong password (not distinguished).
            UserInactiveError: Account is deactivated.
            RateLimitExceededError: Login verification required and too many codes sent.
        """
        email = email.lower().strip()
        user = self._users.get_user_by_email(email)

        if user is None or not verify_password(password, user.password_hash):
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=email,
                user_id=user.id if user else None,
                ip_address=device.ip_address,
                user_agent=device.user_agent,
                details={"reason": "user_not_found" if user is None else "bad_password"},
            )
            raise InvalidCredentialsError("Invalid email or password")

        if not user.is_active:
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=email,
                user_id=user.id,
                ip_address=device.ip_address,
                user_agent=device.user_agent,
                details={"reason": "user_inactive"},
            )
            raise UserInactiveError("User account is deactivated")

        if self._config.require_login_verification:
            verification = self._verification.request_code(
                email,
                VerificationPurpose.LOGIN_VERIFICATION,
                ip_address=device.ip_address,
                user_agent=device.user_agent,
                user_id=user.id,
            )
            return LoginResult(verification_required=True, verification=verification)

        authenticated = self._open_session(user, device)
        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=email,
            user_id=user.id,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
        )
        return LoginResult(verification_required=False, authenticated=authenticated)

    def complete_login(self, email: str, code: str, device: DeviceInfo) -> AuthenticatedUser:
        """Verify a login code and sign in.

        Raises:
            InvalidOrExpiredCodeError: Wrong, used or expired code.
            TooManyAttemptsError: Code locked; log in again for a new one.
            UserInactiveError: Account was deactivated after the code was sent.
        """
        email = email.lower().strip()
        self._verification.verify_code(
            email,
            code,
            VerificationPurpose.LOGIN_VERIFICATION,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
        )

        user = self._users.get_user_by_email(email)
        if user is None:
            raise InvalidOrExpiredCodeError()
        if not user.is_active:
            raise UserInactiveError("User account is deactivated")

        authenticated = self._open_session(user, device)
        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=email,
            user_id=user.id,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            details={"verified": True},
        )
        return authenticated

    def request_password_reset(
        self,
        email: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Send a reset code if the email belongs to an active account.

        Returns the same way whether or not the account exists, and whether
        or not it is rate limited, so callers can't probe for emails.

        Raises:
            EmailGatewayError: If email send fails.
        """
        email = email.lower().strip()
        user = self._users.get_user_by_email(email)

        if user is None or not user.is_active:
            self._security_logger.log(
                SecurityEvent.PASSWORD_RESET_REQUESTED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "user_not_found" if user is None else "user_inactive"},
            )
            return

        try:
            self._verification.request_code(
                email,
                VerificationPurpose.PASSWORD_RESET,
                ip_address=ip_address,
                user_agent=user_agent,
                user_id=user.id,
            )
        except RateLimitExceededError:
            # Logged by the verification service; the caller sees a normal reset
            return

        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_REQUESTED,
            email=email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def complete_password_reset(
        self,
        email: str,
        code: str,
        new_password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> int:
        """Verify a reset code, set the new password and end every session.

        Returns:
            Number of sessions terminated.

        Raises:
            InvalidOrExpiredCodeError: Wrong, used or expired code.
            TooManyAttemptsError: Code locked; request a new one.
        """
        email = email.lower().strip()
        self._verification.verify_code(
            email,
            code,
            VerificationPurpose.PASSWORD_RESET,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        user = self._users.get_user_by_email(email)
        if user is None:
            raise InvalidOrExpiredCodeError()

        self._users.update_password(user.id, hash_password(new_password))
        terminated = self._session_manager.terminate_all(user.id)

        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_COMPLETED,
            email=email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"sessions_terminated": terminated},
        )
        return terminated

    def logout(self, session_token: str, ip_address: str | None = None) -> None:
        """Terminate one session.

        Safe to call with invalid token.
        """
        session = self._session_manager.get(session_token)
        self._session_manager.terminate(session_token)

        self._security_logger.log(
            SecurityEvent.SESSION_TERMINATED,
            user_id=session.user_id if session else None,
            ip_address=ip_address,
        )

    def logout_all(self, user_id: UUID, ip_address: str | None = None) -> int:
        """Terminate every session of a user. Returns how many were active."""
        terminated = self._session_manager.terminate_all(user_id)

        self._security_logger.log(
            SecurityEvent.SESSIONS_TERMINATED_ALL,
            user_id=user_id,
            ip_address=ip_address,
            details={"sessions_terminated": terminated},
        )
        return terminated

    def validate_session(self, token: str) -> Session:
        """Validate session token, sliding its expiry.

        Raises:
            SessionExpiredError: If session invalid or expired.
        """
        return self._session_manager.touch(token)

    def get_user(self, user_id: UUID) -> User | None:
        return self._users.get_user_by_id(user_id)

    def list_sessions(self, user_id: UUID) -> list[Session]:
        """Active sessions, most recently used first."""
        return self._session_manager.list_active(user_id)
