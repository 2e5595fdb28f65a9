"""
Configuration Module for AuthGate Service

This module defines the configuration system for the AuthGate service, using Pydantic for
settings validation and dependency injection through AppKeys.

The configuration follows these principles:
1. Environment-based configuration with sensible defaults
2. Strong validation and typing through Pydantic
3. Dependency injection pattern using aiohttp's app context
4. Every stateful component is built once at startup and published through an AppKey;
   nothing lives in module-level globals

Key configuration areas include:
- Service networking and monitoring
- Session store and audit log backends
- Identity provider pools (standard and privileged audiences)
- Session cache, refresh and timeout policy
- Rate limiting
- Secondary credential acquisition
"""

import asyncio
from typing import Final, Literal, Optional
import logging
from pydantic import (
    AliasChoices,
    Field,
    field_validator,
    PostgresDsn,
    RedisDsn,
)
from pydantic_settings import BaseSettings
from aiohttp import web
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from aiohttp import ClientSession
from redis import asyncio as redis

from social.graze.authgate.app.metrics import MetricsClient
from social.graze.authgate.app.ratelimit import RateLimiter
from social.graze.authgate.auth.orchestrator import AuthOrchestrator
from social.graze.authgate.model.health import HealthGauge


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the AuthGate service.

    This class uses Pydantic's BaseSettings to automatically load values from environment
    variables, with defaults suitable for development environments.

    Environment variables are mapped to settings fields by name, with aliases provided
    where the deployment conventions differ. For example, the database connection string
    can be set with either PG_DSN or DATABASE_URL environment variables.
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable debug mode for verbose logging and detailed error responses.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=4000)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    trust_forwarded_for: bool = False
    """
    Use the first X-Forwarded-For entry as the client address for rate limiting
    and auditing. Only enable behind a proxy that sets the header.
    Set with TRUST_FORWARDED_FOR environment variable.
    """

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: Literal["telegraf", "none"] = "telegraf"
    """
    Metrics backend, either 'telegraf' (StatsD) or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    # Storage backends
    session_store: Literal["memory", "redis", "database"] = "database"
    """
    Where cached sessions are kept: 'memory', 'redis' or 'database'.
    Set with SESSION_STORE environment variable.
    """

    audit_log: Literal["memory", "database"] = "database"
    """
    Where login attempts are recorded: 'memory' or 'database'.
    Set with AUDIT_LOG environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string, used when SESSION_STORE=redis.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    pg_dsn: PostgresDsn = Field(
        "postgresql+asyncpg://postgres:password@db/authgate",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )  # type: ignore
    """
    PostgreSQL connection string, used when SESSION_STORE or AUDIT_LOG is 'database'.
    Set with PG_DSN or DATABASE_URL environment variables.
    """

    # Identity provider settings
    aws_region: str = "us-east-1"
    """
    AWS region of the Cognito user pools.
    Set with AWS_REGION environment variable.
    """

    cognito_endpoint: Optional[str] = None
    """
    Override for the Cognito Identity Provider endpoint, e.g. a local emulator.
    Set with COGNITO_ENDPOINT environment variable.
    """

    cognito_client_id: Optional[str] = None
    """
    App client id of the standard user pool. The /auth route answers 503 when unset.
    Set with COGNITO_CLIENT_ID environment variable.
    """

    cognito_client_secret: Optional[str] = None
    """
    App client secret of the standard user pool, if the client has one.
    Set with COGNITO_CLIENT_SECRET environment variable.
    """

    cognito_client_id_admin: Optional[str] = None
    """
    App client id of the privileged user pool. The /admin/auth route answers 503 when unset.
    Set with COGNITO_CLIENT_ID_ADMIN environment variable.
    """

    cognito_client_secret_admin: Optional[str] = None
    """
    App client secret of the privileged user pool, if the client has one.
    Set with COGNITO_CLIENT_SECRET_ADMIN environment variable.
    """

    # Session policy
    session_grace_period_seconds: int = 60
    """
    Cached access tokens expiring within this many seconds are treated as expired.
    Set with SESSION_GRACE_PERIOD_SECONDS environment variable.
    Default: 60
    """

    rotate_refresh_tokens: bool = False
    """
    Whether the provider rotates refresh tokens. When true, a refresh token returned by
    a refresh replaces the stored one; otherwise the stored one is kept.
    Set with ROTATE_REFRESH_TOKENS environment variable.
    """

    provider_timeout_seconds: float = 10.0
    """
    Timeout for each identity provider call. A timed out refresh falls back to full
    authentication.
    Set with PROVIDER_TIMEOUT_SECONDS environment variable.
    """

    # Rate limiting
    rate_limit_max_attempts: int = 5
    """
    Attempts admitted per client address in one window.
    Set with RATE_LIMIT_MAX_ATTEMPTS environment variable.
    Default: 5
    """

    rate_limit_window_seconds: int = 60
    """
    Length of the rate limit window in seconds.
    Set with RATE_LIMIT_WINDOW_SECONDS environment variable.
    Default: 60
    """

    rate_limit_sweep_interval_seconds: int = 60
    """
    How often expired rate limit windows are swept from memory.
    Set with RATE_LIMIT_SWEEP_INTERVAL_SECONDS environment variable.
    """

    # Secondary credential settings
    secondary_login_url: Optional[str] = None
    """
    Login form URL of the downstream system issuing the secondary credential.
    Secondary credentials are disabled when unset.
    Set with SECONDARY_LOGIN_URL environment variable.
    """

    secondary_origin: Optional[str] = None
    """
    Origin (and Referer) header sent with the secondary login form, if the
    downstream system checks it.
    Set with SECONDARY_ORIGIN environment variable.
    """

    secondary_cookie_name: str = "auth-token-accountancy"
    """
    Cookie carrying the secondary credential when it is not returned in the
    Authorization header.
    Set with SECONDARY_COOKIE_NAME environment variable.
    """

    secondary_timeout_seconds: float = 10.0
    """
    Timeout for the secondary credential fetch. A timeout means no secondary token.
    Set with SECONDARY_TIMEOUT_SECONDS environment variable.
    """

    @field_validator(
        "provider_timeout_seconds",
        "secondary_timeout_seconds",
        "rate_limit_max_attempts",
        "rate_limit_window_seconds",
        "rate_limit_sweep_interval_seconds",
    )
    @classmethod
    def positive(cls, v):
        """Reject zero and negative timeouts, limits and intervals."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("session_grace_period_seconds")
    @classmethod
    def not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""

RateLimiterAppKey: Final = web.AppKey("rate_limiter", RateLimiter)
"""AppKey for the per-client login rate limiter"""

OrchestratorAppKey: Final = web.AppKey("orchestrator", AuthOrchestrator)
"""AppKey for the authentication orchestrator"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that decays the health gauge"""

RateLimitSweepTaskAppKey: Final = web.AppKey(
    "rate_limit_sweep_task", asyncio.Task[None]
)
"""AppKey for the background task that drops expired rate limit windows"""
