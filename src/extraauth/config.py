"""Configuration using pydantic-settings.

Every setting can come from an ``EXTRAAUTH_``-prefixed environment variable or
a ``.env`` file. Nothing is required: code that passes explicit arguments to
the client factories never needs configuration.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from extraauth.assertion import SPREADSHEETS_SCOPE
from extraauth.provider import DEFAULT_TIMEOUT, GOOGLE_TOKEN_URL
from extraauth.transport import DEFAULT_MAX_RETRIES


class Settings(BaseSettings):
    """Settings for token exchange and authenticated clients.

    Environment variables:
    - EXTRAAUTH_TOKEN_URL: OAuth2 token endpoint
    - EXTRAAUTH_TIMEOUT: HTTP timeout in seconds
    - EXTRAAUTH_MAX_RETRIES: Re-sends allowed after a 401
    - EXTRAAUTH_SERVICE_ACCOUNT_FILE: Default service account key file
    - EXTRAAUTH_SCOPES: Comma-separated OAuth2 scopes
    - EXTRAAUTH_LOG_LEVEL / EXTRAAUTH_JSON_LOGS: CLI logging
    """

    model_config = SettingsConfigDict(
        env_prefix="EXTRAAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    token_url: str = GOOGLE_TOKEN_URL
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES

    service_account_file: str = ""
    scopes: str = SPREADSHEETS_SCOPE

    log_level: str = "WARNING"
    json_logs: bool = False

    def get_scopes(self) -> list[str]:
        """Get the configured scopes as a list."""
        return [s.strip() for s in self.scopes.split(",") if s.strip()]

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one loguru knows."""
        level = v.upper()
        allowed = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        if level not in allowed:
            raise ValueError(f"log_level must be one of: {sorted(allowed)}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
