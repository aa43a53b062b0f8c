# Overview: Unit-of-work and retry primitives shared by every ledger mutation.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConstraintViolation
from ..extensions import db

DEFAULT_ATTEMPTS = 3


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the unit of work is
    opened with BEGIN IMMEDIATE instead, which takes the database write lock
    up front.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = DEFAULT_ATTEMPTS, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Anything else propagates untouched.
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
    if last_exc:
        raise last_exc


def _begin_unit_of_work() -> None:
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def _configured_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", DEFAULT_ATTEMPTS))
    return DEFAULT_ATTEMPTS


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Run ``func`` as one atomic unit of work.

    Commits when ``func`` returns; rolls back on any exception so no partial
    stock or income change survives. Lock timeouts and optimistic conflicts
    re-run the whole unit from the start. IntegrityError surfaces as
    ConstraintViolation.
    """
    def _op():
        try:
            _begin_unit_of_work()
            result = func()
            db.session.commit()
            return result
        except IntegrityError as exc:
            db.session.rollback()
            raise ConstraintViolation(
                "Write rejected by a database constraint",
                details={"constraint": str(exc.orig)},
            ) from exc
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(
        _op,
        attempts=attempts or _configured_attempts(),
        backoff_base=backoff_base,
    )
