"""Configuration module for the DealDesk application."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv

from dealdesk.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    RECORD_STORE_URL: str
    RECORD_STORE_TIMEOUT_SECONDS: int
    RECORD_STORE_MAX_RETRIES: int
    RECORD_STORE_REQUIRED: bool
    DEFAULT_CURRENCY_CODE: str
    DEFAULT_PROBABILITY: int
    LOG_LEVEL: str
    LOG_FILE: str

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))

    config = Config(
        APP_NAME="DealDesk",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        RECORD_STORE_URL=os.getenv("RECORD_STORE_URL", "http://localhost:8080/api").rstrip("/"),
        RECORD_STORE_TIMEOUT_SECONDS=int(os.getenv("RECORD_STORE_TIMEOUT_SECONDS", "30")),
        RECORD_STORE_MAX_RETRIES=int(os.getenv("RECORD_STORE_MAX_RETRIES", "2")),
        RECORD_STORE_REQUIRED=_as_bool(os.getenv("RECORD_STORE_REQUIRED"), default=False),
        DEFAULT_CURRENCY_CODE=os.getenv("DEFAULT_CURRENCY_CODE", "USD").strip().upper(),
        DEFAULT_PROBABILITY=int(os.getenv("DEFAULT_PROBABILITY", "50")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
    )
    _validate_config(config)
    return config


def _validate_record_store_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise ConfigurationError("RECORD_STORE_URL must use http:// or https://.")
    if not parsed.hostname:
        raise ConfigurationError("RECORD_STORE_URL is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_record_store_url(config.RECORD_STORE_URL)

    if config.RECORD_STORE_TIMEOUT_SECONDS < 1:
        raise ConfigurationError("RECORD_STORE_TIMEOUT_SECONDS must be >= 1.")
    if config.RECORD_STORE_MAX_RETRIES < 0:
        raise ConfigurationError("RECORD_STORE_MAX_RETRIES must be >= 0.")
    if len(config.DEFAULT_CURRENCY_CODE) != 3 or not config.DEFAULT_CURRENCY_CODE.isalpha():
        raise ConfigurationError("DEFAULT_CURRENCY_CODE must be a 3-letter ISO-4217 code.")
    if not 0 <= config.DEFAULT_PROBABILITY <= 100:
        raise ConfigurationError("DEFAULT_PROBABILITY must be between 0 and 100.")
    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    if config.is_production and config.RECORD_STORE_URL.startswith("http://localhost"):
        raise ConfigurationError("Production RECORD_STORE_URL points at localhost.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
