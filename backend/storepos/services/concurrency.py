# Overview: Unit-of-work, row-locking and retry helpers shared by the sale engine.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the write lock taken by
    atomic() serializes writers instead.
    """
    return query.with_for_update()


@contextmanager
def atomic(session=None):
    """
    Run the block as one unit of work on ``session``.

    Commits when the block finishes and rolls back on any exception, so no
    error path leaves a half-applied change behind. On SQLite the unit opens
    with BEGIN IMMEDIATE so concurrent writers queue on the database lock
    instead of failing mid-transaction.
    """
    session = session if session is not None else db.session
    try:
        if session.get_bind().dialect.name == "sqlite":
            session.execute(text("BEGIN IMMEDIATE"))
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple = RETRYABLE_ERRORS,
    session=None,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default; callers may widen ``retry_on``.
    The last failure is re-raised once attempts are exhausted.
    """
    session = session if session is not None else db.session
    for attempt in range(attempts):
        try:
            return func()
        except retry_on:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
