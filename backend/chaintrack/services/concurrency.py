# Overview: Transaction boundary for every write; locking, commit/rollback and retry.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the write transaction up front.

    On SQLite this issues BEGIN IMMEDIATE so the whole read-compute-write
    runs under the single database writer lock. A transaction already open
    on the connection is reused.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def atomic_write(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func() as one all-or-nothing write transaction.

    - commits when func returns
    - rolls back on ANY exception, so no partial state is ever persisted
    - retries on OperationalError (locks, deadlocks) and StaleDataError
      (optimistic version conflicts) with exponential backoff

    Domain errors are never retried.
    """
    for attempt in range(attempts):
        try:
            begin_write()
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def run_write(func, *, commit: bool = True):
    """commit=False runs func inside the caller's transaction."""
    if not commit:
        return func()
    return atomic_write(func)
