# backend/barbertab/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/barbertab.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///barbertab.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Wall-clock zone used when an incoming start_time carries an offset
    SHOP_TIMEZONE = os.environ.get("SHOP_TIMEZONE", "UTC")

    # Daily grid window (local hours, end exclusive): 08:00-21:00 = 13 rows
    SCHEDULE_WINDOW_START_HOUR = int(os.environ.get("SCHEDULE_WINDOW_START_HOUR", "8"))
    SCHEDULE_WINDOW_END_HOUR = int(os.environ.get("SCHEDULE_WINDOW_END_HOUR", "21"))

    # Booking rules
    ALLOW_DOUBLE_BOOKING = _env_flag("ALLOW_DOUBLE_BOOKING", False)
    REQUIRE_PHONE_FOR_NEW_CLIENT = _env_flag("REQUIRE_PHONE_FOR_NEW_CLIENT", True)
    BOOKING_ATOMIC = _env_flag("BOOKING_ATOMIC", True)

    # explicit | tab_staff | first_active
    DEFAULT_RESPONSIBLE_STAFF = os.environ.get("DEFAULT_RESPONSIBLE_STAFF", "explicit")

    # Settlement
    ALLOW_NEGATIVE_STOCK = _env_flag("ALLOW_NEGATIVE_STOCK", False)
    SETTLEMENT_LEDGER_CATEGORY = os.environ.get("SETTLEMENT_LEDGER_CATEGORY", "Counter sale")

    CORS_ALLOWED_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }
