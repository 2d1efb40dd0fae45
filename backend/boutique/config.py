# backend/boutique/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///boutique.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # SQLite busy timeout; concurrent checkouts and POS sales wait for the write lock
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}

    # Identities auto-granted the admin role at sign-in (comma-separated);
    # create_app parses this once into a frozenset
    PRIVILEGED_EMAILS = os.environ.get("PRIVILEGED_EMAILS", "")

    # Retry policy for ledger writes that hit lock contention
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF = float(os.environ.get("STOCK_RETRY_BACKOFF", "0.1"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Shared secret payment gateway adapters send as X-Callback-Token (unset = not checked)
    PAYMENT_CALLBACK_TOKEN = os.environ.get("PAYMENT_CALLBACK_TOKEN")
