"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Short durations are in minutes, session lifetime in days.
    """

    # Verification codes
    code_expiry_minutes: int = Field(
        default=10,
        description="How long a verification code remains valid",
        ge=1,
        le=60,
    )
    max_attempts: int = Field(
        default=3,
        description="Wrong submissions allowed before a code is locked",
        ge=1,
        le=10,
    )

    # Rate limiting
    rate_limit_max_requests: int = Field(
        default=5,
        description="Max codes issued per email and purpose per window",
        ge=1,
        le=20,
    )
    rate_limit_window_minutes: int = Field(
        default=60,
        description="Trailing window for code issuance",
        ge=1,
        le=1440,
    )

    # Sessions
    session_extension_days: int = Field(
        default=7,
        description="Sliding session lifetime, renewed on activity",
        ge=1,
        le=90,
    )

    # Login
    require_login_verification: bool = Field(
        default=False,
        description="Send a login_verification code after a correct password",
    )

    # Maintenance
    security_log_retention_days: int = Field(
        default=90,
        description="Security events older than this are archived",
        ge=1,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL",
    )
    app_name: str = Field(
        default="TalePick",
        description="Application name for emails",
    )
