"""Environment-based configuration using pydantic-settings.

Example:
    >>> from gatehouse.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.http.port
    8080
    >>> settings.http.enforces_security
    False

    # Or with environment variables:
    # HTTP_PORT=9090
    # HTTP_TOKENINFO_URL=https://auth.example.org/oauth2/tokeninfo
    # HTTP_BREAKER_FAILURE_THRESHOLD=10
    # GATEHOUSE_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, PositiveFloat, PositiveInt, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HttpSettings(BaseSettings):
    """Listener and authentication configuration of the HTTP component."""

    model_config = SettingsConfigDict(
        env_prefix="HTTP_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: Annotated[int, Field(ge=0, le=65535)] = 8080
    no_listen: bool = Field(default=False, description="Build the handler without binding a socket")
    tokeninfo_url: str | None = Field(
        default=None,
        description="Token introspection endpoint; unset disables enforcement",
    )
    tokeninfo_timeout: PositiveFloat = Field(default=1.0, description="Introspection timeout in seconds")
    graceful_timeout: PositiveFloat = Field(default=5.0, description="Bounded drain on stop in seconds")
    hsts: bool = True
    cors: bool = True
    cors_origin: str = "*"

    @field_validator("tokeninfo_url", mode="before")
    @classmethod
    def _blank_is_unset(cls, v: str | None) -> str | None:
        """Treat an empty variable like an absent one."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @computed_field
    @property
    def enforces_security(self) -> bool:
        return self.tokeninfo_url is not None


class BreakerSettings(BaseSettings):
    """Circuit breaker around the introspection endpoint."""

    model_config = SettingsConfigDict(
        env_prefix="HTTP_BREAKER_",
        extra="ignore",
    )

    failure_threshold: PositiveInt = Field(default=20, description="Failures within window before opening")
    window: PositiveFloat = Field(default=10.0, description="Rolling window in seconds")
    cooldown: PositiveFloat = Field(default=5.0, description="Seconds open before a trial call")
    max_concurrent: PositiveInt = Field(default=64, description="Bound on in-flight resolutions")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GATEHOUSE_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"


class GatehouseSettings(BaseSettings):
    """Root settings; the configuration handle attached to every request."""

    model_config = SettingsConfigDict(
        env_prefix="GATEHOUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    http: HttpSettings = Field(default_factory=HttpSettings)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> GatehouseSettings:
    """Get the process-wide settings instance (cached)."""
    return GatehouseSettings()


def clear_settings_cache() -> None:
    """Forget cached settings so the next get_settings() rereads the environment."""
    get_settings.cache_clear()
