"""Configuration loaded from the environment (and a ``.env`` file if present).

Durations are written the Go way (``500ms``, ``5s``, ``1m30s``) or as bare
seconds. Malformed numbers fall back to the default; out-of-range values raise
``ConfigError``.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError

VALID_ENVIRONMENTS = ("development", "testing", "staging", "production")
VALID_LOG_LEVELS = ("debug", "info", "warn", "error", "fatal")

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


@dataclass(frozen=True)
class APIConfig:
    base_url: str
    application_key: str
    timeout: float
    max_retries: int
    retry_delay: float


@dataclass(frozen=True)
class DatabaseConfig:
    path: str
    max_connections: int


@dataclass(frozen=True)
class AppConfig:
    environment: str
    log_level: str
    worker_count: int
    batch_size: int
    shutdown_timeout: float
    sync_interval_minutes: int


@dataclass(frozen=True)
class Config:
    api: APIConfig
    database: DatabaseConfig
    app: AppConfig


def parse_duration(value: str) -> float:
    """Return the number of seconds in ``value``; raise ValueError if malformed."""
    value = value.strip()
    if not value:
        raise ValueError("empty duration")
    try:
        return float(value)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        raise ValueError(f"invalid duration: {value}")
    return total


def _get_env(key: str, default: str) -> str:
    return os.getenv(key, default)


def _get_int_env(key: str, default: int) -> int:
    raw = os.getenv(key, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_duration_env(key: str, default: float) -> float:
    raw = os.getenv(key, "")
    if not raw:
        return default
    try:
        return parse_duration(raw)
    except ValueError:
        return default


def load_config(local_mode: bool = False) -> Config:
    """Build and validate the configuration.

    The application key is only required when the run talks to the API.
    """
    load_dotenv()

    cfg = Config(
        api=APIConfig(
            base_url=_get_env("API_BASE_URL", "https://api.lookout.com").rstrip("/"),
            application_key=_get_env("APPLICATION_KEY", ""),
            timeout=_get_duration_env("API_TIMEOUT", 30.0),
            max_retries=_get_int_env("API_MAX_RETRIES", 3),
            retry_delay=_get_duration_env("API_RETRY_DELAY", 5.0),
        ),
        database=DatabaseConfig(
            path=_get_env("DB_PATH", str(Path("data") / "devices.db")),
            max_connections=_get_int_env("DB_MAX_CONNECTIONS", 10),
        ),
        app=AppConfig(
            environment=_get_env("APP_ENV", "development"),
            log_level=_get_env("LOG_LEVEL", "info").lower(),
            worker_count=_get_int_env("WORKER_COUNT", 5),
            batch_size=_get_int_env("BATCH_SIZE", 1000),
            shutdown_timeout=_get_duration_env("SHUTDOWN_TIMEOUT", 30.0),
            sync_interval_minutes=_get_int_env("SYNC_INTERVAL_MINUTES", 0),
        ),
    )
    validate_config(cfg, local_mode=local_mode)
    return cfg


def validate_config(cfg: Config, local_mode: bool = False) -> None:
    if not local_mode and not cfg.api.application_key:
        raise ConfigError("APPLICATION_KEY is required when not in local mode")
    if cfg.api.timeout < 1:
        raise ConfigError("API_TIMEOUT must be at least 1 second")
    if cfg.api.max_retries < 0:
        raise ConfigError("API_MAX_RETRIES must be non-negative")
    if cfg.api.retry_delay < 1:
        raise ConfigError("API_RETRY_DELAY must be at least 1 second")

    if not cfg.database.path:
        raise ConfigError("DB_PATH is required")
    if cfg.database.max_connections < 1:
        raise ConfigError("DB_MAX_CONNECTIONS must be at least 1")

    if cfg.app.environment not in VALID_ENVIRONMENTS:
        raise ConfigError(f"invalid APP_ENV: {cfg.app.environment}")
    if cfg.app.log_level not in VALID_LOG_LEVELS:
        raise ConfigError(f"invalid LOG_LEVEL: {cfg.app.log_level}")
    if cfg.app.worker_count < 1:
        raise ConfigError("WORKER_COUNT must be at least 1")
    if cfg.app.batch_size < 1:
        raise ConfigError("BATCH_SIZE must be at least 1")
    if cfg.app.shutdown_timeout < 1:
        raise ConfigError("SHUTDOWN_TIMEOUT must be at least 1 second")
    if cfg.app.sync_interval_minutes < 0:
        raise ConfigError("SYNC_INTERVAL_MINUTES must be non-negative")
