from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping

from dotenv import load_dotenv

from .errors import ConfigError


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _normalize_database_url(value: str | None, fallback: str) -> str:
    raw = (value or fallback).strip() or fallback
    # Some dashboards accidentally store quoted values.
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1].strip()

    if "://" not in raw:
        return raw

    scheme, suffix = raw.split("://", 1)
    scheme = scheme.lower()

    if scheme in {
        "postgres",
        "postgresql",
        "postgresql+psycopg",
        "postgresql+psycopg2",
    }:
        url = f"postgresql+psycopg2://{suffix}"
        if "sslmode" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}sslmode=require"
        return url

    return raw


ALERT_CHANNELS = ("smtp", "webhook", "log")


@dataclass(frozen=True)
class Settings:
    env: str
    host: str
    port: int
    database_url: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    access_token: str
    max_failed_attempts: int
    window_duration_ms: int
    trust_proxy: bool
    alert_channel: str
    alert_recipient: str
    alert_webhook_url: str
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_starttls: bool
    notifier_timeout_seconds: float
    alert_queue_size: int
    tracker_shards: int
    tracker_sweep_interval_seconds: float
    enable_prometheus_metrics: bool
    log_level: str

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def window_seconds(self) -> float:
        return self.window_duration_ms / 1000.0

    def validate(self) -> None:
        """Raise before serving anything when required settings are missing."""
        if not self.access_token:
            raise ConfigError("ACCESS_TOKEN must be set")
        if self.max_failed_attempts < 1:
            raise ConfigError("MAX_FAILED_ATTEMPTS must be a positive integer")
        if self.window_duration_ms < 1:
            raise ConfigError("WINDOW_DURATION_MS must be a positive integer")
        if self.alert_channel not in ALERT_CHANNELS:
            raise ConfigError(
                f"ALERT_CHANNEL must be one of {', '.join(ALERT_CHANNELS)}, got {self.alert_channel!r}"
            )
        if self.alert_channel == "smtp":
            if not self.smtp_host:
                raise ConfigError("SMTP_HOST is required when ALERT_CHANNEL=smtp")
            if not self.alert_recipient:
                raise ConfigError("ALERT_RECIPIENT is required when ALERT_CHANNEL=smtp")
        if self.alert_channel == "webhook" and not self.alert_webhook_url:
            raise ConfigError("ALERT_WEBHOOK_URL is required when ALERT_CHANNEL=webhook")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from the process environment (and .env) or an explicit mapping."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    return Settings(
        env=environ.get("ENV", "development"),
        host=environ.get("HOST", "0.0.0.0").strip(),
        port=_as_int(environ.get("PORT"), 8000),
        database_url=_normalize_database_url(
            environ.get("DATABASE_URL"),
            "sqlite:///./failwatch.db",
        ),
        db_pool_size=max(1, _as_int(environ.get("DB_POOL_SIZE"), 5)),
        db_max_overflow=max(0, _as_int(environ.get("DB_MAX_OVERFLOW"), 10)),
        db_pool_timeout=max(1, _as_int(environ.get("DB_POOL_TIMEOUT"), 30)),
        db_pool_recycle=max(60, _as_int(environ.get("DB_POOL_RECYCLE"), 1800)),
        access_token=environ.get("ACCESS_TOKEN", "").strip(),
        max_failed_attempts=_as_int(environ.get("MAX_FAILED_ATTEMPTS"), 5),
        window_duration_ms=_as_int(environ.get("WINDOW_DURATION_MS"), 600_000),
        trust_proxy=_as_bool(environ.get("TRUST_PROXY"), True),
        alert_channel=environ.get("ALERT_CHANNEL", "smtp").strip().lower(),
        alert_recipient=environ.get("ALERT_RECIPIENT", "").strip(),
        alert_webhook_url=environ.get("ALERT_WEBHOOK_URL", "").strip(),
        smtp_host=environ.get("SMTP_HOST", "").strip(),
        smtp_port=_as_int(environ.get("SMTP_PORT"), 587),
        smtp_user=environ.get("SMTP_MAIL", "").strip(),
        smtp_password=environ.get("SMTP_PASSWORD", ""),
        smtp_starttls=_as_bool(environ.get("SMTP_STARTTLS"), False),
        notifier_timeout_seconds=max(0.1, _as_float(environ.get("NOTIFIER_TIMEOUT_SECONDS"), 10.0)),
        alert_queue_size=max(1, _as_int(environ.get("ALERT_QUEUE_SIZE"), 1000)),
        tracker_shards=max(1, _as_int(environ.get("TRACKER_SHARDS"), 16)),
        tracker_sweep_interval_seconds=max(
            1.0, _as_float(environ.get("TRACKER_SWEEP_INTERVAL_SECONDS"), 60.0)
        ),
        enable_prometheus_metrics=_as_bool(environ.get("ENABLE_PROMETHEUS_METRICS"), True),
        log_level=environ.get("LOG_LEVEL", "INFO").strip().upper(),
    )
