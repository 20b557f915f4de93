"""Configuration module for the leadflow engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from leadflow.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    REDIS_URL: str
    CELERY_BROKER_URL: str
    CELERY_RESULT_BACKEND: str
    API_PREFIX: str
    LOG_LEVEL: str
    LOG_FILE: str
    SCHEDULER_TIMEZONE: str
    SLA_RESPONSE_MINUTES: int
    SLA_CRITICAL_MINUTES: int
    SLA_METRICS_WINDOW_HOURS: int
    DEDUP_WINDOW_HOURS: int
    WEBHOOK_MAX_RETRIES: int
    WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS: int
    WEBHOOK_SECRET_EMAIL_PROVIDER: str | None
    WEBHOOK_SECRET_CRM: str | None
    SEQUENCE_RESPONSE_LOOKBACK_HOURS: int
    JOB_STALL_TIMEOUT_SECONDS: int
    TRANSPORT_SANDBOX_MODE: bool
    TRANSPORT_TIMEOUT_SECONDS: int
    SMTP_HOST: str | None
    SMTP_PORT: int
    SMTP_USERNAME: str | None
    SMTP_PASSWORD: str | None
    SMTP_FROM_EMAIL: str
    CHAT_WEBHOOK_URL: str | None
    SMS_ACCOUNT_SID: str | None
    SMS_AUTH_TOKEN: str | None
    SMS_FROM_NUMBER: str | None
    ESCALATION_EMAILS: tuple[str, ...]
    ESCALATION_PHONES: tuple[str, ...]
    CRM_API_URL: str | None
    CRM_ACCESS_TOKEN: str | None
    DASHBOARD_URL: str

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    def webhook_secret(self, source: str) -> str | None:
        return {
            "email_provider": self.WEBHOOK_SECRET_EMAIL_PROVIDER,
            "crm": self.WEBHOOK_SECRET_CRM,
        }.get(source)


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    config = Config(
        APP_NAME="leadflow",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./leadflow.db"),
        REDIS_URL=redis_url,
        CELERY_BROKER_URL=os.getenv("CELERY_BROKER_URL", redis_url),
        CELERY_RESULT_BACKEND=os.getenv("CELERY_RESULT_BACKEND", redis_url),
        API_PREFIX=os.getenv("API_PREFIX", "/api/v1"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
        SCHEDULER_TIMEZONE=os.getenv("SCHEDULER_TIMEZONE", "America/New_York"),
        SLA_RESPONSE_MINUTES=int(os.getenv("SLA_RESPONSE_MINUTES", "5")),
        SLA_CRITICAL_MINUTES=int(os.getenv("SLA_CRITICAL_MINUTES", "10")),
        SLA_METRICS_WINDOW_HOURS=int(os.getenv("SLA_METRICS_WINDOW_HOURS", "24")),
        DEDUP_WINDOW_HOURS=int(os.getenv("DEDUP_WINDOW_HOURS", "24")),
        WEBHOOK_MAX_RETRIES=int(os.getenv("WEBHOOK_MAX_RETRIES", "3")),
        WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS=int(os.getenv("WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS", "300")),
        WEBHOOK_SECRET_EMAIL_PROVIDER=os.getenv("WEBHOOK_SECRET_EMAIL_PROVIDER"),
        WEBHOOK_SECRET_CRM=os.getenv("WEBHOOK_SECRET_CRM"),
        SEQUENCE_RESPONSE_LOOKBACK_HOURS=int(os.getenv("SEQUENCE_RESPONSE_LOOKBACK_HOURS", "24")),
        JOB_STALL_TIMEOUT_SECONDS=int(os.getenv("JOB_STALL_TIMEOUT_SECONDS", "300")),
        TRANSPORT_SANDBOX_MODE=_as_bool(os.getenv("TRANSPORT_SANDBOX_MODE"), default=True),
        TRANSPORT_TIMEOUT_SECONDS=int(os.getenv("TRANSPORT_TIMEOUT_SECONDS", "30")),
        SMTP_HOST=os.getenv("SMTP_HOST"),
        SMTP_PORT=int(os.getenv("SMTP_PORT", "587")),
        SMTP_USERNAME=os.getenv("SMTP_USERNAME"),
        SMTP_PASSWORD=os.getenv("SMTP_PASSWORD"),
        SMTP_FROM_EMAIL=os.getenv("SMTP_FROM_EMAIL", "noreply@leadflow.local"),
        CHAT_WEBHOOK_URL=os.getenv("CHAT_WEBHOOK_URL"),
        SMS_ACCOUNT_SID=os.getenv("SMS_ACCOUNT_SID"),
        SMS_AUTH_TOKEN=os.getenv("SMS_AUTH_TOKEN"),
        SMS_FROM_NUMBER=os.getenv("SMS_FROM_NUMBER"),
        ESCALATION_EMAILS=_as_list(os.getenv("ESCALATION_EMAILS")),
        ESCALATION_PHONES=_as_list(os.getenv("ESCALATION_PHONES")),
        CRM_API_URL=os.getenv("CRM_API_URL"),
        CRM_ACCESS_TOKEN=os.getenv("CRM_ACCESS_TOKEN"),
        DASHBOARD_URL=os.getenv("DASHBOARD_URL", "http://localhost:8000"),
    )
    _validate_config(config)
    return config


def _validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2", "postgresql+psycopg"}:
        raise ConfigurationError(
            "DATABASE_URL must use sqlite:// or postgresql:// style URL."
        )
    if parsed.scheme.startswith("postgresql") and not parsed.hostname:
        raise ConfigurationError("PostgreSQL DATABASE_URL is missing hostname.")


def validate_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone: {name}") from exc


def _validate_config(config: Config) -> None:
    _validate_database_url(config.DATABASE_URL)
    validate_timezone(config.SCHEDULER_TIMEZONE)

    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    if config.SLA_RESPONSE_MINUTES < 1:
        raise ConfigurationError("SLA_RESPONSE_MINUTES must be >= 1.")
    if config.SLA_CRITICAL_MINUTES <= config.SLA_RESPONSE_MINUTES:
        raise ConfigurationError("SLA_CRITICAL_MINUTES must be greater than SLA_RESPONSE_MINUTES.")
    if config.SLA_METRICS_WINDOW_HOURS < 1:
        raise ConfigurationError("SLA_METRICS_WINDOW_HOURS must be >= 1.")
    if config.DEDUP_WINDOW_HOURS < 0:
        raise ConfigurationError("DEDUP_WINDOW_HOURS must be >= 0.")
    if config.WEBHOOK_MAX_RETRIES < 1:
        raise ConfigurationError("WEBHOOK_MAX_RETRIES must be >= 1.")
    if config.WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS < 1:
        raise ConfigurationError("WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS must be >= 1.")
    if config.JOB_STALL_TIMEOUT_SECONDS < 1:
        raise ConfigurationError("JOB_STALL_TIMEOUT_SECONDS must be >= 1.")
    if config.TRANSPORT_TIMEOUT_SECONDS < 1:
        raise ConfigurationError("TRANSPORT_TIMEOUT_SECONDS must be >= 1.")
    if config.is_production and config.TRANSPORT_SANDBOX_MODE:
        raise ConfigurationError("TRANSPORT_SANDBOX_MODE must be disabled in production.")
    if config.is_production and not (config.WEBHOOK_SECRET_EMAIL_PROVIDER and config.WEBHOOK_SECRET_CRM):
        raise ConfigurationError("Production requires webhook secrets for every signed source.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
