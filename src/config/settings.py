"""Application settings using Pydantic Settings.

Centralized configuration for the connection lifecycle service.

SECURITY: Production requires the following environment variables:
- APP_SECRET_KEY: Main application secret (min 32 chars)
- JWT_SECRET: Shared key used to verify identity-provider tokens (min 32 chars)

Generate secrets with: python -c "import secrets; print(secrets.token_hex(32))"
"""

import os
import sys
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis configuration for the device-local cache."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")

    max_connections: int = Field(default=20, description="Max Redis connections")
    socket_timeout: int = Field(default=2, description="Socket timeout in seconds")
    socket_connect_timeout: int = Field(default=2, description="Connection timeout")

    key_prefix: str = Field(default="cleartrack:", description="Prefix for all cache keys")
    # 0 disables expiry; mirrors are rehydrated by reconciliation, not by TTL
    default_ttl: int = Field(default=0, description="Default TTL in seconds")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class ResilienceSettings(BaseSettings):
    """Timeouts and retry policy for Record Store calls."""

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        extra="ignore",
    )

    store_timeout: float = Field(default=5.0, gt=0, description="Per-call Record Store timeout in seconds")

    retry_max_attempts: int = Field(default=3, ge=1, description="Max attempts for store reads")
    retry_initial_delay: float = Field(default=0.2, ge=0, description="Initial delay in seconds")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1, description="Backoff multiplier")
    retry_max_delay: float = Field(default=5.0, ge=0, description="Max delay between retries")


class LinkingSettings(BaseSettings):
    """Business rules for practitioner-client links."""

    model_config = SettingsConfigDict(
        env_prefix="LINKING_",
        extra="ignore",
    )

    fraud_appeal_days: int = Field(default=30, ge=1, description="Grace period after a fraud tag")
    invite_ttl_hours: int = Field(default=24, ge=1, description="Client invite lifetime")
    code_length: int = Field(default=6, ge=4, le=12, description="Practitioner and invite code length")
    reassignment_concurrency: int = Field(default=8, ge=1, description="Parallel migrations per sweep")
    match_contention_attempts: int = Field(default=10, ge=1, description="Cursor CAS attempts per match")
    matching_fallback_to_any: bool = Field(
        default=False,
        description="Match any approved practitioner when no specialization overlaps",
    )
    device_id: str = Field(default="default", description="Scope for the local cache")
    reconcile_interval: float = Field(default=30.0, gt=0, description="Seconds between journal replays")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = Field(default="ClearTrack Connections", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # CRITICAL: Must be set via APP_SECRET_KEY environment variable in production
    secret_key: str = Field(
        default="change-me-in-production-INSECURE",
        description="Secret key for signing - MUST be set in production"
    )

    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    cors_origins: list = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins"
    )

    enable_cache: bool = Field(default=True, description="Connect the Redis-backed local cache")

    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def resilience(self) -> ResilienceSettings:
        return ResilienceSettings()

    @property
    def linking(self) -> LinkingSettings:
        return LinkingSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")

    def validate_production_security(self) -> List[str]:
        """
        Validate all security requirements for production.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.is_production:
            return errors

        if "INSECURE" in self.secret_key or self.secret_key == "change-me-in-production":
            errors.append(
                "APP_SECRET_KEY: Must be set in production. "
                "Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        elif len(self.secret_key) < 32:
            errors.append("APP_SECRET_KEY: Must be at least 32 characters")

        jwt_secret = os.environ.get("JWT_SECRET")
        if not jwt_secret:
            errors.append(
                "JWT_SECRET: Required in production to verify identity tokens. "
                "Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        elif len(jwt_secret) < 32:
            errors.append("JWT_SECRET: Must be at least 32 characters")

        return errors


class StartupSecurityError(Exception):
    """Raised when security validation fails at startup."""
    pass


def validate_startup_security(settings: Settings, exit_on_failure: bool = True) -> bool:
    """
    Validate security settings at application startup.

    In production this fails fast if critical security settings are missing.

    Args:
        settings: Application settings instance
        exit_on_failure: If True, exit the process on failure (default)

    Returns:
        True if validation passes

    Raises:
        StartupSecurityError: If validation fails and exit_on_failure is False
    """
    errors = settings.validate_production_security()

    if not errors:
        if settings.is_production:
            logger.info("Production security validation PASSED")
        return True

    error_msg = (
        "\n" + "=" * 60 + "\n"
        "CRITICAL SECURITY CONFIGURATION ERROR\n"
        "=" * 60 + "\n\n"
    )
    for i, err in enumerate(errors, 1):
        error_msg += f"  {i}. {err}\n\n"

    logger.critical(error_msg)

    if exit_on_failure:
        print(error_msg, file=sys.stderr)
        sys.exit(1)
    else:
        raise StartupSecurityError(error_msg)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()


@lru_cache
def get_linking_settings() -> LinkingSettings:
    """Get cached linking rules."""
    return LinkingSettings()
