from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    default_timezone: str = "America/Los_Angeles"
    billing_interval_seconds: int = 86400

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def stripe_configured(self) -> bool:
        return self.stripe_secret_key is not None


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")
    timezone_raw = _getenv("DEFAULT_TIMEZONE", "America/Los_Angeles")
    interval_raw = _getenv("BILLING_INTERVAL_SECONDS", "86400")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in _TRUTHY + _FALSY:
        raise ValueError(f"LOG_JSON must be a boolean (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        billing_interval_seconds = int(interval_raw)
    except ValueError:
        raise ValueError(
            f"BILLING_INTERVAL_SECONDS must be an integer (got {interval_raw!r})"
        ) from None
    if billing_interval_seconds <= 0:
        raise ValueError(
            "BILLING_INTERVAL_SECONDS must be positive "
            f"(got {billing_interval_seconds})"
        )

    try:
        ZoneInfo(timezone_raw)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"DEFAULT_TIMEZONE must be an IANA zone name (got {timezone_raw!r})"
        ) from None

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None
    stripe_secret_key = _getenv("STRIPE_SECRET_KEY", "") or None
    stripe_webhook_secret = _getenv("STRIPE_WEBHOOK_SECRET", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in _TRUTHY,
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        stripe_secret_key=stripe_secret_key,
        stripe_webhook_secret=stripe_webhook_secret,
        default_timezone=timezone_raw,
        billing_interval_seconds=billing_interval_seconds,
    )


SETTINGS = load_settings()
