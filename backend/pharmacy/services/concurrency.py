# Overview: Locking and retry helpers shared by the stock ledger and sale committer.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current transaction as a writer.

    SQLite has no row locks, so the whole database is taken for writing up
    front (BEGIN IMMEDIATE); concurrent writers queue on the busy timeout
    instead of reading stock that is about to change. Other dialects rely on
    lock_for_update().
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts): the retried call re-reads current rows.
    Any other exception rolls the session back (releasing locks) and
    propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("COMMIT_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
