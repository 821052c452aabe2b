from functools import lru_cache
from threading import Lock
from typing import Optional
import base64
import binascii
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        from wpfleet.shared.core.security import EncryptionKeyManager

        EncryptionKeyManager.clear_key_caches()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the fleet manager.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "WP Fleet"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./wpfleet.db"
    DB_ECHO: bool = False

    # Credential encryption (site application passwords are stored as ciphertext)
    ENCRYPTION_KEY: Optional[str] = None
    ENCRYPTION_FALLBACK_KEYS: list[str] = []
    KDF_SALT: Optional[str] = None

    # Remote site API
    REMOTE_TIMEOUT_SECONDS: float = 30.0
    REMOTE_CONNECT_TIMEOUT_SECONDS: float = 10.0
    # Unset disables outbound rate limiting
    REMOTE_RATE_LIMIT_PER_SECOND: Optional[float] = None
    REMOTE_USER_AGENT: str = "wpfleet/0.1"

    # Bulk updates
    BULK_UPDATE_CONCURRENCY: int = 3
    BULK_UPDATE_DEADLINE_SECONDS: Optional[float] = None

    # Scheduling & notifications
    SYNC_INTERVAL_MINUTES: int = 60
    NOTIFY_UPDATES_THRESHOLD: int = 5
    NOTIFY_SSL_WINDOW_DAYS: int = 7
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation, grouped by concern."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )

        self._validate_concurrency_config()
        self._validate_schedule_config()
        if self.TESTING:
            return self

        self._validate_core_secrets()
        return self

    def _validate_core_secrets(self) -> None:
        if not self.ENCRYPTION_KEY or len(self.ENCRYPTION_KEY) < 32:
            raise ValueError("ENCRYPTION_KEY must be set to a secure value (>= 32 chars).")

        if not self.KDF_SALT:
            raise ValueError("KDF_SALT must be set (base64-encoded random 32 bytes).")
        try:
            decoded_salt = base64.b64decode(self.KDF_SALT, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("KDF_SALT must be valid base64.") from exc
        if len(decoded_salt) != 32:
            raise ValueError("KDF_SALT must decode to exactly 32 bytes.")

    def _validate_concurrency_config(self) -> None:
        if self.BULK_UPDATE_CONCURRENCY < 1:
            raise ValueError("BULK_UPDATE_CONCURRENCY must be >= 1.")
        if self.BULK_UPDATE_DEADLINE_SECONDS is not None and self.BULK_UPDATE_DEADLINE_SECONDS <= 0:
            raise ValueError("BULK_UPDATE_DEADLINE_SECONDS must be > 0 when set.")
        if self.REMOTE_RATE_LIMIT_PER_SECOND is not None and self.REMOTE_RATE_LIMIT_PER_SECOND <= 0:
            raise ValueError("REMOTE_RATE_LIMIT_PER_SECOND must be > 0 when set.")

    def _validate_schedule_config(self) -> None:
        if self.SYNC_INTERVAL_MINUTES < 1:
            raise ValueError("SYNC_INTERVAL_MINUTES must be >= 1.")
        if self.NOTIFY_UPDATES_THRESHOLD < 1:
            raise ValueError("NOTIFY_UPDATES_THRESHOLD must be >= 1.")
        if self.NOTIFY_SSL_WINDOW_DAYS < 0:
            raise ValueError("NOTIFY_SSL_WINDOW_DAYS must be >= 0.")

    @property
    def is_production(self) -> bool:
        """True only when ENVIRONMENT is explicitly set to 'production'."""
        return self.ENVIRONMENT == ENV_PRODUCTION
