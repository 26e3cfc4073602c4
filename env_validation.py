"""Environment variable validation and management."""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


@dataclass(frozen=True)
class AppConfig:
    database_url: Optional[str]
    port: int
    webhook_url: Optional[str]
    notify_timeout: float
    cors_allow_origins: Tuple[str, ...]
    log_level: str


_SUPPORTED_DB_SCHEMES = ("sqlite://",)


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required: without DATABASE_URL the in-process store
    # is used and without N8N_WEBHOOK_URL the notifier stays disabled.
    defaults = {
        "PORT": "4000",
        "NOTIFY_TIMEOUT": "5",
        "LOG_LEVEL": "INFO",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "DATABASE_URL": "Record store connection string (in-process store when unset)",
        "N8N_WEBHOOK_URL": "Workflow webhook notified when a student needs intervention",
    }

    port = os.environ["PORT"]
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise EnvironmentError(f"Invalid PORT: {port}")

    try:
        timeout = float(os.environ["NOTIFY_TIMEOUT"])
    except ValueError:
        raise EnvironmentError(f"Invalid NOTIFY_TIMEOUT: {os.environ['NOTIFY_TIMEOUT']}") from None
    if timeout <= 0:
        raise EnvironmentError("NOTIFY_TIMEOUT must be positive")

    if not isinstance(logging.getLevelName(os.environ["LOG_LEVEL"].upper()), int):
        raise EnvironmentError(f"Invalid LOG_LEVEL: {os.environ['LOG_LEVEL']}")

    # Validate URLs
    url_vars = {"N8N_WEBHOOK_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    database_url = os.getenv("DATABASE_URL")
    if database_url and "://" in database_url and not database_url.startswith(_SUPPORTED_DB_SCHEMES):
        scheme = database_url.split("://", 1)[0]
        raise EnvironmentError(f"Unsupported DATABASE_URL scheme: {scheme}")

    # Log optional variables status
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning(f"Optional environment variable not set: {var} ({description})")


def load_config() -> AppConfig:
    """Read the validated environment into an :class:`AppConfig`."""
    origins = tuple(
        origin.strip()
        for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
        if origin.strip()
    )
    return AppConfig(
        database_url=os.getenv("DATABASE_URL") or None,
        port=int(os.getenv("PORT", "4000")),
        webhook_url=os.getenv("N8N_WEBHOOK_URL") or None,
        notify_timeout=float(os.getenv("NOTIFY_TIMEOUT", "5")),
        cors_allow_origins=origins or ("*",),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

