# backend/bizdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bizdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///bizdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Credit term applied to every receivable opened at invoice creation
    RECEIVABLE_TERM_DAYS = int(os.environ.get("RECEIVABLE_TERM_DAYS", "30"))

    # Basis points (600 = 6%)
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "600"))

    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "INV")
    INVOICE_NUMBER_PAD = int(os.environ.get("INVOICE_NUMBER_PAD", "3"))

    # When true the allocator ignores cancelled invoices, so a cancelled tail number is handed out again
    INVOICE_NUMBER_REUSE_CANCELLED = _env_bool("INVOICE_NUMBER_REUSE_CANCELLED", False)
