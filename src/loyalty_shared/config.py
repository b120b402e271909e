"""
Utilities to centralize configuration handling across the loyalty services.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class AppConfig:
    """Simple container for application level settings."""

    app_name: str
    # PostgreSQL database
    db_host: str
    db_port: int
    db_user: str
    db_password: str
    db_name: str
    db_sslmode: str
    # App settings
    secret_key: str
    log_level: str
    currency: str
    debug_mode: bool
    flask_debug: bool

    @property
    def sqlalchemy_uri(self) -> str:
        """
        Build a SQLAlchemy PostgreSQL URI using psycopg2 as the driver.

        ``DATABASE_URL`` takes precedence over this value in ``db.init_engine``.
        """
        ssl_arg = f"?sslmode={self.db_sslmode}" if self.db_sslmode else ""
        return (
            f"postgresql+psycopg2://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}{ssl_arg}"
        )


def _read_env(name: str, default: str | None = None) -> str:
    """
    Internal helper to fetch environment variables with support for defaults.
    """
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required environment variable '{name}'")
        value = default
    return value


def read_bool(name: str, default: str = "false") -> bool:
    value = _read_env(name, default)
    return value.strip().lower() in {"1", "true", "yes", "on"}


def read_float(name: str, default: str) -> float:
    value = _read_env(name, default)
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be a number, got: {value}") from exc


def load_config(app_name: str) -> AppConfig:
    """
    Produce an AppConfig instance populated from environment variables.

    Each service passes its desired `app_name` to keep logs easy to
    differentiate while still reusing the same config loader.
    """
    return AppConfig(
        app_name=app_name,
        db_host=_read_env("POSTGRES_HOST", "localhost"),
        db_port=int(_read_env("POSTGRES_PORT", "5432")),
        db_user=_read_env("POSTGRES_USER", "loyalty"),
        db_password=_read_env("POSTGRES_PASSWORD", "loyalty"),
        db_name=_read_env("POSTGRES_DB", "loyalty"),
        db_sslmode=_read_env("POSTGRES_SSLMODE", "disable"),
        secret_key=_read_env("SECRET_KEY", "change-me-please"),
        log_level=_read_env("LOG_LEVEL", "INFO"),
        currency=_read_env("CURRENCY", "AED"),
        debug_mode=read_bool("DEBUG_MODE", "false"),
        flask_debug=read_bool("FLASK_DEBUG", "false"),
    )


# Upper bound, in seconds, on waiting for the customer wallet lock
PAYMENT_TIMEOUT_SECONDS = read_float("PAYMENT_TIMEOUT_SECONDS", "10")

ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "ORD")

DEFAULT_ESTIMATED_READY_MINUTES = int(os.getenv("DEFAULT_ESTIMATED_READY_MINUTES", "20"))
