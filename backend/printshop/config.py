# backend/printshop/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///printshop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Money rules (percent values)
    TAX_RATE_PERCENT = os.environ.get("TAX_RATE_PERCENT", "10")
    DISCOUNT_APPROVAL_THRESHOLD_PERCENT = os.environ.get("DISCOUNT_APPROVAL_THRESHOLD_PERCENT", "15")

    # Day counts
    DEFAULT_CREDIT_PERIOD_DAYS = int(os.environ.get("DEFAULT_CREDIT_PERIOD_DAYS", "30"))
    DEFAULT_JOB_DUE_DAYS = int(os.environ.get("DEFAULT_JOB_DUE_DAYS", "3"))
    QUOTATION_VALID_DAYS = int(os.environ.get("QUOTATION_VALID_DAYS", "30"))

    # Production alerts fire once rework_count goes above this
    REWORK_ALERT_THRESHOLD = int(os.environ.get("REWORK_ALERT_THRESHOLD", "2"))

    # Unit-of-work retries on lock contention / stale writes
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
