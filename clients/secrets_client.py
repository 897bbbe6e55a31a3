"""
Infrastructure secrets for TalePick.

Loaded from environment variables (and a .env file) with pydantic-settings.
Fails fast on missing configuration: accessing a secret that isn't set
raises instead of returning a default.
"""

import logging
from typing import Dict

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_settings_instance: "InfraSettings | None" = None


class SecretsError(Exception):
    """Required secret is missing. Fatal - the service cannot start without it."""


class InfraSettings(BaseSettings):
    """Connection secrets, read from TALEPICK_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TALEPICK_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = ""
    valkey_url: str = ""
    email_gateway_url: str = ""
    email_api_key: str = ""
    email_hmac_secret: str = ""

    def require(self, field: str) -> str:
        """
        Value of a secret field.

        Raises:
            SecretsError: If the field is empty or unset.
        """
        value = getattr(self, field)
        if not value:
            env_name = f"TALEPICK_{field.upper()}"
            logger.error("Missing secret: %s", env_name)
            raise SecretsError(f"{env_name} is required")
        return value


def get_settings() -> InfraSettings:
    """Process-wide settings, loaded once."""
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = InfraSettings()
        except ValidationError as e:
            raise SecretsError(f"Invalid infrastructure settings: {e}")
    return _settings_instance


def reset_settings_cache() -> None:
    """Drop cached settings (used after env changes and in tests)."""
    global _settings_instance
    _settings_instance = None


def get_database_url() -> str:
    """PostgreSQL connection URL."""
    return get_settings().require("database_url")


def get_valkey_url() -> str:
    """Valkey (Redis) connection URL."""
    return get_settings().require("valkey_url")


def get_email_config() -> Dict[str, str]:
    """Email gateway settings: gateway_url, api_key, hmac_secret."""
    settings = get_settings()
    return {
        "gateway_url": settings.require("email_gateway_url"),
        "api_key": settings.require("email_api_key"),
        "hmac_secret": settings.require("email_hmac_secret"),
    }
