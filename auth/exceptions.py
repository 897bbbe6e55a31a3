"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class RateLimitExceededError(AuthError):
    """Too many codes issued. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class InvalidOrExpiredCodeError(AuthError):
    """
    Submitted code is wrong, expired, already used, or was never issued.

    Deliberately doesn't say which. remaining_attempts is set only when a
    wrong code was counted against a live record.
    """

    def __init__(self, remaining_attempts: int | None = None):
        self.remaining_attempts = remaining_attempts
        if remaining_attempts is None:
            message = "Invalid or expired verification code"
        else:
            message = f"Invalid verification code. {remaining_attempts} attempt(s) remaining."
        super().__init__(message)


class TooManyAttemptsError(AuthError):
    """Code is locked after too many wrong submissions. Request a new one."""

    def __init__(self, message: str = "Too many failed attempts. Request a new code."):
        super().__init__(message)


class AlreadyUsedError(AuthError):
    """
    Conditional consume lost: the record is used, expired or exhausted.

    Store-level only; the validator translates it.
    """


class AttemptsExhaustedError(AuthError):
    """
    Conditional attempt increment lost: no attempts left on the record.

    Store-level only; the validator translates it.
    """


class InvalidCredentialsError(AuthError):
    """Email or password is wrong. Never says which."""


class AccountExistsError(AuthError):
    """
    Email or username already registered.

    Message is generic so callers can't tell which field collided.
    """


class SessionExpiredError(AuthError):
    """Session is missing, terminated or past its expiry. Re-authenticate."""


class UserInactiveError(AuthError):
    """User account is deactivated. Login not permitted."""
