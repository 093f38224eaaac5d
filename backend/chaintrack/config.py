# backend/chaintrack/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///chaintrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a writer waits on a locked SQLite database before giving up
    DB_LOCK_TIMEOUT_SECONDS = float(os.environ.get("DB_LOCK_TIMEOUT_SECONDS", "15"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Authenticity (QR signatures + unit auth codes).
    # Pre-shared static secret: demo grade, rotate per deployment.
    AUTHENTICITY_SECRET = os.environ.get("AUTHENTICITY_SECRET", "dev-authenticity-secret-change-me")
    QR_PAYLOAD_PREFIX = os.environ.get("QR_PAYLOAD_PREFIX", "LS")

    # Serial domain defaults, copied into serial_settings on first use
    SERIAL_RANGE_START = int(os.environ.get("SERIAL_RANGE_START", "100000"))
    SERIAL_RANGE_END = int(os.environ.get("SERIAL_RANGE_END", "100999"))
    SERIAL_RESERVATION_TTL_SECONDS = int(os.environ.get("SERIAL_RESERVATION_TTL_SECONDS", "900"))
    MAX_SERIAL_BATCH = int(os.environ.get("MAX_SERIAL_BATCH", "100"))
