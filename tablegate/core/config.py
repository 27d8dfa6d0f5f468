"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Complex values (roles, user roles, per-table TTLs) are read as JSON from the
environment, e.g. ``AUTH_ROLES='{"admin": {"*": ["list", "read"]}}'``.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_ROLES: dict[str, dict[str, list[str]]] = {
    "admin": {"*": ["list", "read", "create", "update", "delete"]},
    "readonly": {"*": ["list", "read"]},
    "users_manager": {
        "users": ["list", "read", "create", "update"],
        "orders": ["list", "read"],
    },
}

DEFAULT_EXCLUDED_TABLES: list[str] = [
    "sessions",
    "user_sessions",
    "api_logs",
    "request_logs",
    "audit_logs",
    "audit_trail",
    "rate_limits",
    "rate_limit_hits",
    "temp_data",
    "queue_jobs",
    "failed_jobs",
]


class AuthSettings(BaseSettings):
    """Authentication and authorization configuration.

    ``roles`` and ``user_roles`` are loaded once at startup and frozen into an
    immutable policy before any request is served.
    """

    enabled: bool = Field(
        True,
        description="Require authentication for every action except login",
    )
    method: str = Field(
        "apikey",
        description="Credential source: apikey, basic or jwt",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys",
    )
    api_key_role: str = Field(
        "admin",
        description="Role assigned to requests authenticated by API key",
    )
    basic_users: dict[str, str] = Field(
        default_factory=dict,
        description="Static username -> password map for basic and login auth",
    )
    user_roles: dict[str, str] = Field(
        default_factory=lambda: {"admin": "admin", "user": "readonly"},
        description="Static username -> role map",
    )
    roles: dict[str, dict[str, list[str]]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_ROLES.items()},
        description="Role -> table (or '*') -> allowed actions",
    )
    jwt_secret: str | None = Field(
        None,
        description="HMAC secret for bearer tokens (required for method=jwt)",
    )
    jwt_issuer: str = Field("tablegate", description="Issuer claim for bearer tokens")
    jwt_audience: str = Field("tablegate", description="Audience claim for bearer tokens")
    jwt_expiration_seconds: int = Field(
        3600,
        description="Lifetime of issued bearer tokens",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Sliding-window rate limiter configuration."""

    enabled: bool = Field(True, description="Enable per-identifier rate limiting")
    max_requests: int = Field(
        100,
        description="Maximum number of requests allowed per window",
        ge=1,
    )
    window_seconds: int = Field(
        60,
        description="Sliding window size in seconds",
        ge=1,
    )
    storage: str = Field(
        "memory",
        description="Window storage backend: memory or file",
    )
    storage_dir: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "tablegate_rate_limits"),
        description="Directory for the file storage backend",
    )
    cleanup_interval_seconds: int = Field(
        300,
        description="Interval between maintenance sweeps (0 disables the sweep)",
        ge=0,
    )
    cleanup_max_age_seconds: int = Field(
        3600,
        description="Records untouched for longer than this are removed by the sweep",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Response cache configuration."""

    enabled: bool = Field(True, description="Master cache switch")
    driver: str = Field("memory", description="Cache driver: memory, file or redis")
    ttl: int = Field(300, description="Default TTL in seconds", ge=1)
    per_table: dict[str, int] = Field(
        default_factory=dict,
        description="Per-table TTL overrides in seconds",
    )
    exclude_tables: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_TABLES),
        description="Tables that never participate in caching",
    )
    vary_by_api_key: bool = Field(
        True,
        description="Keep a distinct cache entry per API key",
    )
    max_entries: int | None = Field(
        4096,
        description="Maximum entries for the memory driver (None for unlimited)",
    )
    file_path: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "tablegate_cache"),
        description="Directory for the file driver",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Connection URL for the redis driver",
    )
    redis_prefix: str = Field("api_cache:", description="Key prefix for the redis driver")

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class CorsSettings(BaseSettings):
    """CORS headers applied by the pipeline."""

    enabled: bool = Field(True, description="Emit CORS headers and answer preflights")
    allow_origin: str = Field("*", description="Access-Control-Allow-Origin value")
    allow_methods: str = Field(
        "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        description="Access-Control-Allow-Methods value",
    )
    allow_headers: str = Field(
        "Content-Type, Authorization, X-Requested-With, X-API-Key",
        description="Access-Control-Allow-Headers value",
    )
    allow_credentials: bool = Field(False, description="Send Allow-Credentials: true")
    max_age: int = Field(86400, description="Preflight cache lifetime in seconds", ge=0)

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate file logs past this size (0 disables)")
    backup_count: int = Field(30, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class PluginSettings(BaseSettings):
    """Plugin selection."""

    enabled: list[str] = Field(
        default_factory=list,
        description="Names of registered plugins to load, in discovery order",
    )
    install_on_startup: bool = Field(
        False,
        description="Run each plugin's idempotent install() after loading",
    )

    model_config = SettingsConfigDict(
        env_prefix="PLUGINS_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    auth: AuthSettings = Field(default_factory=AuthSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    plugins: PluginSettings = Field(default_factory=PluginSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings.
# Only the app factory reads it; services receive explicit values.
settings = Settings()
