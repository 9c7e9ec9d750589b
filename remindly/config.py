from __future__ import annotations

import os
from dataclasses import dataclass


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    app_host: str
    app_port: int
    sqlite_busy_timeout_ms: int
    cron_secret: str | None
    smtp_host: str
    smtp_port: int
    smtp_user: str | None
    smtp_pass: str | None
    email_from: str
    vapid_public_key: str | None
    vapid_private_key: str | None
    vapid_email: str
    missed_grace_minutes: int
    emi_dedup_lookback_minutes: int
    reminder_dedup_minutes: int | None


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./remindly.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        app_host=os.getenv("APP_HOST", "0.0.0.0"),
        app_port=int(os.getenv("APP_PORT", "8000")),
        sqlite_busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        cron_secret=os.getenv("CRON_SECRET") or None,
        smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_user=os.getenv("SMTP_USER") or None,
        smtp_pass=os.getenv("SMTP_PASS") or None,
        email_from=os.getenv("EMAIL_FROM", "Remindly <noreply@remindly.app>"),
        vapid_public_key=os.getenv("VAPID_PUBLIC_KEY") or None,
        vapid_private_key=os.getenv("VAPID_PRIVATE_KEY") or None,
        vapid_email=os.getenv("VAPID_EMAIL", "mailto:admin@remindly.app"),
        missed_grace_minutes=int(os.getenv("MISSED_GRACE_MINUTES", "60")),
        emi_dedup_lookback_minutes=int(os.getenv("EMI_DEDUP_LOOKBACK_MINUTES", "120")),
        reminder_dedup_minutes=_optional_int("REMINDER_DEDUP_MINUTES"),
    )
