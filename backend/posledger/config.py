# backend/posledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tax applied to non-exempt sales, in basis points (1200 = 12%).
    # The reference deployment runs with tax disabled.
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "0"))

    # Business day boundaries for daily reports
    REPORT_TIMEZONE = os.environ.get("REPORT_TIMEZONE", "UTC")

    PAYMENT_METHODS = ("cash", "card", "gcash")

    LEDGER_HISTORY_MAX_LIMIT = 500
    LEDGER_HISTORY_BATCH_SIZE = 50

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "5"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = {
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:4173",
        "http://127.0.0.1:4173",
    }
