# Overview: Service-layer operations for concurrency; locking, write transactions and retry.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Rows already in the session are refreshed from the locked read, so a
    read-modify-write never starts from a stale identity-map copy.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    Start the current unit of work as a writer.

    SQLite has no row locks, so take the database write lock up front with
    BEGIN IMMEDIATE; a deferred transaction that upgrades from reader to
    writer midway can fail with "database is locked" after doing work.
    Must be called before any statement of the unit of work runs.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
