# backend/shopledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Calendar day used for income_summary rows (IANA zone name)
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

    # Whole unit-of-work retries on lock timeouts / optimistic conflicts
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "5"))

    # Push notifications: "expo", "log" or "null"
    NOTIFICATION_BACKEND = os.environ.get("NOTIFICATION_BACKEND", "log")
    EXPO_ACCESS_TOKEN = os.environ.get("EXPO_ACCESS_TOKEN")
    EXPO_PUSH_URL = os.environ.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
    EXPO_TIMEOUT_SECONDS = float(os.environ.get("EXPO_TIMEOUT_SECONDS", "15"))
    NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", True)
    NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", "2"))
    # Appended to amounts in notification text
    CURRENCY_LABEL = os.environ.get("CURRENCY_LABEL", "Ks")
