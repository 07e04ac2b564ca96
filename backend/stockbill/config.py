# backend/stockbill/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockbill.sqlite3 unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockbill.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Lot consumption order used by the stock allocator (see services/lot_ordering.py)
    STOCK_LOT_ORDERING = os.environ.get("STOCK_LOT_ORDERING", "lifo_cost_desc")

    # Retry policy for lock/version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))
