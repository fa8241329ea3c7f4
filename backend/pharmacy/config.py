# backend/pharmacy/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmacy.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmacy.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Alert thresholds
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    EXPIRY_WINDOW_DAYS = int(os.environ.get("EXPIRY_WINDOW_DAYS", "60"))

    # Lock/version conflict retries for stock writes
    COMMIT_RETRY_ATTEMPTS = int(os.environ.get("COMMIT_RETRY_ATTEMPTS", "3"))

    # Seconds between keep-alive comments on idle live feed streams
    FEED_KEEPALIVE_SECONDS = float(os.environ.get("FEED_KEEPALIVE_SECONDS", "15"))

    CORS_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }

    API_VERSION = "0.1.0"
