"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: Mock payment step, in-memory broadcast hub, SQLite
    - STAGING: Real payment gateway (sandbox), Redis broadcast bridge
    - PRODUCTION: Real payment gateway, Redis broadcast bridge, PostgreSQL

The ENV_MODE variable controls which service implementations are
instantiated throughout the application.

Usage:
    from orderflow.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Use mock services
    else:
        # Use real gateways

Version: 1.0.0
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with mock services
        PRODUCTION: Live environment with real integrations
        STAGING: Pre-production testing with real integrations but test keys
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class BroadcastBackend(str, Enum):
    """Transport used by the realtime hub to reach other server processes."""
    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Secrets (token secrets, gateway keys) should NEVER be committed.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Kiosk Order Flow",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8080,
        description="API server port"
    )
    cors_origins: str = Field(
        default="http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ==========================================================================
    # DATABASE
    # ==========================================================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///./orderflow.db",
        description="Async SQLAlchemy database URL"
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )
    sqlite_busy_timeout: float = Field(
        default=30.0,
        description="Seconds a SQLite writer waits for the database lock"
    )

    # ==========================================================================
    # REDIS / CELERY
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (Celery broker and broadcast bridge)"
    )

    # ==========================================================================
    # CREDENTIALS
    # ==========================================================================

    access_token_secret: str = Field(
        default="dev-access-secret-change-me",
        description="Secret used to sign staff access tokens"
    )
    device_token_secret: str = Field(
        default="dev-device-secret-change-me",
        description="Secret shared by terminal and display device tokens"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )
    access_token_expire_minutes: int = Field(
        default=60 * 12,
        description="Lifetime of issued tokens"
    )

    # ==========================================================================
    # PAYMENT STEP
    # ==========================================================================

    payment_gateway_url: Optional[str] = Field(
        default=None,
        description="Base URL of the UPI payment gateway (staging/production)"
    )
    payment_gateway_key: Optional[str] = Field(
        default=None,
        description="API key sent to the payment gateway"
    )
    payment_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for the payment step before it counts as failed"
    )
    payment_mock_failure_rate: float = Field(
        default=0.10,
        description="Probability that the mock payment step declines"
    )
    payment_mock_min_latency: float = Field(
        default=2.0,
        description="Minimum simulated payment latency in seconds"
    )
    payment_mock_max_latency: float = Field(
        default=3.0,
        description="Maximum simulated payment latency in seconds"
    )
    currency: str = Field(
        default="inr",
        description="Currency code for payments"
    )

    # ==========================================================================
    # ORDER PIPELINE
    # ==========================================================================

    pending_order_ttl_seconds: int = Field(
        default=300,
        description="Pending orders older than this are compensated and failed"
    )
    recovery_interval_seconds: int = Field(
        default=60,
        description="How often the stale-order recovery task runs"
    )
    fulfillment_max_retries: int = Field(
        default=3,
        description="Compare-and-set attempts before a status advance gives up"
    )

    # ==========================================================================
    # REALTIME
    # ==========================================================================

    broadcast_backend: BroadcastBackend = Field(
        default=BroadcastBackend.MEMORY,
        description="memory (single process) or redis (multi process)"
    )
    broadcast_channel_prefix: str = Field(
        default="orderflow:outlet:",
        description="Redis channel prefix, suffixed with the location id"
    )
    broadcast_send_timeout: float = Field(
        default=2.0,
        description="Seconds one socket may take to accept a frame before it is dropped"
    )
    broadcast_reconnect_delay: float = Field(
        default=0.5,
        description="First wait before the Redis bridge resubscribes after an error"
    )
    broadcast_reconnect_max_delay: float = Field(
        default=30.0,
        description="Upper bound for the Redis bridge reconnect backoff"
    )
    ws_auth_timeout: float = Field(
        default=5.0,
        description="Seconds a socket has to send its auth message"
    )

    # ==========================================================================
    # TERMINAL
    # ==========================================================================

    terminal_data_directory: str = Field(
        default="data/terminals",
        description="Root directory for terminal-local stores"
    )
    terminal_lock_timeout: int = Field(
        default=10,
        description="Seconds to wait for a terminal store file lock"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("payment_mock_failure_rate")
    @classmethod
    def validate_failure_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("payment_mock_failure_rate must be between 0 and 1")
        return v

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def is_staging(self) -> bool:
        """Check if running in staging mode."""
        return self.env_mode == EnvironmentMode.STAGING

    @property
    def use_real_services(self) -> bool:
        """Check if real external services should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.payment_gateway_url:
                missing.append("PAYMENT_GATEWAY_URL")
            if not self.payment_gateway_key:
                missing.append("PAYMENT_GATEWAY_KEY")
            if self.access_token_secret.startswith("dev-"):
                missing.append("ACCESS_TOKEN_SECRET")
            if self.device_token_secret.startswith("dev-"):
                missing.append("DEVICE_TOKEN_SECRET")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once per process; call ``get_settings.cache_clear()``
    after changing the environment in tests.
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    return logging.getLogger("orderflow")


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance."""
    return logging.getLogger(name)
