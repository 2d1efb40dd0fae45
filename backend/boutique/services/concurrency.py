# Overview: Retry wrapper for ledger units of work that contend on the same rows.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (lock timeouts, deadlocks, dropped
    connections) and StaleDataError. The session is rolled back before each
    retry so func always starts from a clean transaction. The final failure
    propagates to the caller.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Store contention, retry %d/%d: %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
