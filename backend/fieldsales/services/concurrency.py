# Overview: Retry and locking helpers shared by the stock and report services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra exception types in
    retry_on. The session is rolled back before each new attempt so func
    always starts from freshly read state. The last exception is re-raised.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.info(
                "Retrying after %s (attempt %d of %d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
