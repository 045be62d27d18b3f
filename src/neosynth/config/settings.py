"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``NEOSYNTH_``, nested via ``__``)
2. YAML config file (``NEOSYNTH_CONFIG_PATH`` env var or ``AppConfig.from_yaml``)
3. Defaults defined here
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class RateLimitBackend(enum.StrEnum):
    """Supported rate limiter backends.

    Only the in-process memory backend ships; limits are per-process.
    """

    MEMORY = "memory"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class ServerConfig(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEOSYNTH_SERVER__",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 5000
    trusted_proxies: str = Field(
        default="127.0.0.1",
        description="Proxy addresses whose X-Forwarded-For is trusted (uvicorn forwarded_allow_ips)",
    )
    cors_origins: list[str] = Field(
        default_factory=list,
        description="Browser origins allowed to call the API with credentials",
    )


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEOSYNTH_DB__",
        case_sensitive=False,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./neosynth.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class AuthConfig(BaseSettings):
    """Authentication and credential lifecycle settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEOSYNTH_AUTH__",
        case_sensitive=False,
    )

    # Admin sessions default to the same lifetime as regular ones.
    session_ttl_days: int = Field(default=90, ge=1)
    admin_session_ttl_days: int = Field(default=90, ge=1)
    step_token_ttl_seconds: int = Field(default=300, ge=1)
    temp_code_ttl_seconds: int = Field(default=600, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    totp_encryption_key: str = Field(
        default="",
        description="64 hex chars (32 bytes) used to encrypt TOTP seeds at rest",
    )
    cookie_secret: str = Field(
        default="",
        description="Secret used to sign the session cookie",
    )
    cookie_name: str = "sessionToken"
    production: bool = False
    disable_auto_admin: bool = False
    debug_auth_logging: bool = False


class RateLimitConfig(BaseSettings):
    """API key rate limiter settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEOSYNTH_RATE_LIMIT__",
        case_sensitive=False,
    )

    backend: RateLimitBackend = RateLimitBackend.MEMORY
    default_per_minute: int = 100
    default_per_hour: int = 1000
    max_per_minute: int = 1000
    max_per_hour: int = 10000

    totp_setup_max: int = 5
    totp_setup_window_seconds: int = 15 * 60
    totp_verify_max: int = 10
    totp_verify_window_seconds: int = 5 * 60


class TaskConfig(BaseSettings):
    """Background sweep settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEOSYNTH_TASK__",
        case_sensitive=False,
    )

    enabled: bool = True
    session_sweep_period: int = 60 * 60
    step_token_sweep_period: int = 60
    temp_code_sweep_period: int = 5 * 60
    api_key_sweep_period: int = 60 * 60


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a YAML config file. A missing or empty file yields ``{}``.

    Raises:
        ValueError: If the document is not a mapping.
    """
    p = Path(path)
    if not p.is_file():
        return {}
    with p.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{p}: top level of a config file must be a mapping")
    return data


def _overlay(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *top* over *base*; keys set to None in *top* do not count."""
    merged = dict(base)
    for key, val in top.items():
        if isinstance(val, dict) and isinstance(merged.get(key), dict):
            merged[key] = _overlay(merged[key], val)
        elif val is not None:
            merged[key] = val
    return merged


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``NEOSYNTH_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="NEOSYNTH_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "1.0.0"
    log_level: str = "INFO"
    config_path: str = ""

    server: ServerConfig = Field(default_factory=ServerConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    task: TaskConfig = Field(default_factory=TaskConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Use the YAML file as the base layer under environment and init values."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        return _overlay(_load_yaml(config_path), values)
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

AUTH_DEBUG_LOGGER = "neosynth.auth"


def configure_logging(config: AppConfig) -> None:
    """Apply the configured log level and the auth debug channel.

    Auth-path debug output is emitted on the ``neosynth.auth`` logger; it is
    switched to ``DEBUG`` only when ``auth.debug_auth_logging`` is enabled.
    """
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    auth_level = logging.DEBUG if config.auth.debug_auth_logging else max(level, logging.INFO)
    logging.getLogger(AUTH_DEBUG_LOGGER).setLevel(auth_level)
