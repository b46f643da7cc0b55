# Overview: Service-layer helpers for locking, retries and units of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import EngineError, PersistenceError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_immediate():
    """
    Take the SQLite write lock up front so read-then-write sequences are
    serialized. No-op on databases that honor FOR UPDATE.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def _retry_settings(attempts, backoff_base):
    config = current_app.config
    if attempts is None:
        attempts = config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("RETRY_BACKOFF_BASE", 0.1)
    return attempts, backoff_base


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Each retry re-runs func from scratch, so
    func must re-read the state it decides on.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.debug(
                "Concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_unit_of_work(func, *, description: str, attempts: int | None = None):
    """
    Run func as one transaction: commit on success, roll back on any failure.

    Business rejections (EngineError) propagate unchanged. Data store failures
    that survive the retries surface as PersistenceError so callers can tell
    "not allowed" from "could not complete".
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts)
    except EngineError:
        raise
    except SQLAlchemyError as exc:
        current_app.logger.exception("Unit of work failed: %s", description)
        raise PersistenceError(
            f"Could not complete: {description}",
            details={"operation": description},
        ) from exc
