# backend/fieldsales/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fieldsales.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Report dates are calendar days in the company's timezone.
    # Companies without their own setting fall back to this one.
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Hebron")

    # Conditional balance updates that lose a race re-run the whole diff this many times
    STOCK_CONFLICT_RETRY_ATTEMPTS = int(os.environ.get("STOCK_CONFLICT_RETRY_ATTEMPTS", "3"))

    CUSTOMER_CLEANUP_BATCH_SIZE = int(os.environ.get("CUSTOMER_CLEANUP_BATCH_SIZE", "100"))

    MAX_REPORT_ATTACHMENTS = 3

    # Callable(ref) -> None used to remove stored attachments. None = log only.
    ATTACHMENT_DELETE_HANDLER = None
