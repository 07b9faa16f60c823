# Overview: Service-layer helpers for concurrency; row locking, retries and guarded status transitions.

from __future__ import annotations

import time

from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Take the SQLite write lock up front.

    SQLite has no row locks; BEGIN IMMEDIATE serializes writers for the whole
    transaction instead of failing on a lock upgrade half way through.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def guarded_transition(model, entity_id: int, *, from_status: str, values: dict) -> bool:
    """
    UPDATE ... SET values WHERE id = :id AND status = :from_status.

    Returns True when exactly one row moved. The status check and the write
    happen in one statement, so two callers racing on the same row can never
    both succeed.
    """
    stmt = (
        update(model)
        .where(model.id == entity_id, model.status == from_status)
        .values(**values)
        .execution_options(synchronize_session="evaluate")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other failure rolls back the open
    transaction and propagates.
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
