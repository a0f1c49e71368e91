# backend/fieldstock/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fieldstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///fieldstock.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session lifetimes (see services/session_service.py)
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))

    # bcrypt work factor for password hashes
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Retry policy for lock/version conflicts (services/concurrency.py)
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.1"))

    DEFAULT_PAGE_LIMIT = int(os.environ.get("DEFAULT_PAGE_LIMIT", "50"))
    MAX_BULK_ITEMS = int(os.environ.get("MAX_BULK_ITEMS", "500"))

    # Used by fieldstock.client when no explicit base URL is given
    FIELDSTOCK_API_URL = os.environ.get("FIELDSTOCK_API_URL", "http://127.0.0.1:5001")
    FIELDSTOCK_API_TIMEOUT = float(os.environ.get("FIELDSTOCK_API_TIMEOUT", "30"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RETRY_BACKOFF_SECONDS = 0.0
    BCRYPT_ROUNDS = 4
    MAX_BULK_ITEMS = 50
