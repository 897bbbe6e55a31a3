"""Authentication and authorization modules."""

from auth.exceptions import (
    AuthError,
    RateLimitExceededError,
    InvalidOrExpiredCodeError,
    TooManyAttemptsError,
    AlreadyUsedError,
    AttemptsExhaustedError,
    InvalidCredentialsError,
    AccountExistsError,
    SessionExpiredError,
    UserInactiveError,
)
from auth.types import (
    VerificationPurpose,
    VerificationStatus,
    VerificationMetadata,
    VerificationCode,
    Platform,
    Browser,
    DeviceInfo,
    Session,
    User,
    AuthenticatedUser,
)
from auth.config import AuthConfig
from auth.codes import generate_code
from auth.database import UserStore
from auth.verification_store import VerificationStore
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent, SecurityEventRecord
from auth.session import SessionManager
from auth.verification import (
    CodeValidator,
    VerificationService,
    VerificationRequestResult,
    VerificationResult,
)
from auth.service import AuthService, LoginResult
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router
from auth.maintenance import run_cleanup, CleanupReport
