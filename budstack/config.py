"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass

DEFAULT_DRGREEN_API_URL = "https://api.drgreennft.com/api/v1"


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        DRGREEN_API_URL: Default base URL of the Dr. Green API.
        ENCRYPTION_KEY: Key material for encrypting tenant credentials at rest.
        ENCRYPTION_MIGRATION_DEADLINE: ISO date until which plaintext
            credentials are still accepted during migration.
        WEBHOOK_DB_PATH: SQLite database for subscriptions and delivery logs.
        WEBHOOK_MAX_ATTEMPTS: Total delivery attempts per subscriber.
        WEBHOOK_RETRY_BASE_SECONDS: Base of the exponential retry backoff.
        WEBHOOK_USER_AGENT: User-Agent header sent with deliveries.
        WEBHOOK_RESPONSE_MAX_CHARS: Response excerpt length kept in the log.
        ENVIRONMENT: Deployment environment name.
        LOG_LEVEL: Logging level.
        LOG_JSON: Render logs as JSON instead of console output.
    """

    # Dr. Green integration
    DRGREEN_API_URL: str = DEFAULT_DRGREEN_API_URL
    ENCRYPTION_KEY: str | None = None
    ENCRYPTION_MIGRATION_DEADLINE: str | None = None

    # Webhooks
    WEBHOOK_DB_PATH: str = "./data/webhooks.db"
    WEBHOOK_MAX_ATTEMPTS: int = 3
    WEBHOOK_RETRY_BASE_SECONDS: float = 1.0
    WEBHOOK_USER_AGENT: str = "BudStack-Webhooks/1.0"
    WEBHOOK_RESPONSE_MAX_CHARS: int = 1000

    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            DRGREEN_API_URL=os.getenv("DOCTOR_GREEN_API_URL", DEFAULT_DRGREEN_API_URL),
            ENCRYPTION_KEY=os.getenv("ENCRYPTION_KEY"),
            ENCRYPTION_MIGRATION_DEADLINE=os.getenv("ENCRYPTION_MIGRATION_DEADLINE"),
            WEBHOOK_DB_PATH=os.getenv("WEBHOOK_DB_PATH", "./data/webhooks.db"),
            WEBHOOK_MAX_ATTEMPTS=_get_int_env("WEBHOOK_MAX_ATTEMPTS", 3),
            WEBHOOK_RETRY_BASE_SECONDS=_get_float_env("WEBHOOK_RETRY_BASE_SECONDS", 1.0),
            WEBHOOK_USER_AGENT=os.getenv("WEBHOOK_USER_AGENT", "BudStack-Webhooks/1.0"),
            WEBHOOK_RESPONSE_MAX_CHARS=_get_int_env("WEBHOOK_RESPONSE_MAX_CHARS", 1000),
            ENVIRONMENT=os.getenv("ENVIRONMENT", "development"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            LOG_JSON=_get_bool_env("LOG_JSON", default=False),
        )


# Global settings instance
settings = Settings.from_env()
