"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class VerificationPurpose(str, Enum):
    """What a verification code authorizes."""

    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"
    LOGIN_VERIFICATION = "login_verification"


class VerificationStatus(str, Enum):
    """
    Derived lifecycle state of a verification code.

    PENDING is the only non-terminal state. Never persisted.
    """

    PENDING = "pending"
    USED = "used"
    EXPIRED = "expired"
    MAX_ATTEMPTS = "max_attempts"


class VerificationMetadata(BaseModel):
    """Payload carried by a code until it is consumed."""

    username: str | None = None
    password_hash: str | None = None
    display_name: str | None = None
    source: str | None = None


class VerificationCode(BaseModel):
    """
    One issued verification code and its usage state.

    Validity and status are computed from stored fields against an explicit
    `now`, so a record read once can be judged at any later instant.
    """

    id: UUID
    email: str
    purpose: VerificationPurpose
    code: str = Field(..., pattern=r"^\d{6}$", repr=False)
    attempts: int = 0
    max_attempts: int = 3
    used_at: datetime | None = None
    created_at: datetime
    expires_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: VerificationMetadata = Field(default_factory=VerificationMetadata)
    user_id: UUID | None = None

    model_config = {"from_attributes": True}

    def is_used(self) -> bool:
        return self.used_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def is_valid(self, now: datetime) -> bool:
        """Unexpired, unused and with attempts left."""
        return not self.is_expired(now) and not self.is_used() and not self.is_exhausted()

    def status(self, now: datetime) -> VerificationStatus:
        """Exactly one state; precedence used > expired > max_attempts > pending."""
        if self.is_used():
            return VerificationStatus.USED
        if self.is_expired(now):
            return VerificationStatus.EXPIRED
        if self.is_exhausted():
            return VerificationStatus.MAX_ATTEMPTS
        return VerificationStatus.PENDING

    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def remaining_seconds(self, now: datetime) -> int:
        """Whole seconds until expiry, 0 once expired."""
        return max(0, int((self.expires_at - now).total_seconds()))


class Platform(str, Enum):
    """Device class a session was opened from."""

    WEB = "web"
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class Browser(str, Enum):
    CHROME = "chrome"
    FIREFOX = "firefox"
    SAFARI = "safari"
    EDGE = "edge"
    OTHER = "other"


class DeviceInfo(BaseModel):
    """Where a session was opened from."""

    user_agent: str | None = None
    ip_address: str | None = None
    platform: Platform = Platform.WEB
    browser: Browser = Browser.OTHER


class Session(BaseModel):
    """A reader session."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    is_active: bool = True
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and now < self.expires_at


class User(BaseModel):
    """A registered reader account."""

    id: UUID
    email: str
    username: str
    display_name: str | None = None
    password_hash: str | None = Field(None, exclude=True, repr=False)
    email_verified: bool = False
    is_active: bool = True
    is_guest: bool = False
    credits: int = 0
    max_credits: int = 20
    last_credit_refill: datetime | None = None
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class AuthenticatedUser(BaseModel):
    """User info returned after successful authentication."""

    user: User
    session: Session


# =============================================================================
# REQUEST BODIES
# =============================================================================


class RegisterRequest(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    password: str = Field(..., min_length=8, max_length=128)
    display_name: str | None = Field(None, max_length=50)


class VerifyCodeRequest(BaseModel):
    """A submitted code for one of the verify endpoints."""

    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")
    new_password: str = Field(..., min_length=8, max_length=128)
