# Overview: Locking, retry, and unit-of-work helpers shared by the invoicing services.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class PersistenceError(Exception):
    """
    A write failed inside a unit of work. Everything the unit of work did has
    been rolled back; step names the sub-step that failed.
    """
    def __init__(self, message: str, *, step: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.step = step
        self.details = details or {}


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra exception types in retry_on.
    """
    retryable = RETRYABLE_ERRORS + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class UnitOfWork:
    """
    Ordered, named steps committed as one database transaction.

    Steps only flush. If any step raises, the whole session is rolled back so
    no step's effect survives. Then:
    - retryable concurrency errors are re-raised for run_with_retry
    - domain errors (ValueError subclasses and passthrough types) are re-raised
    - anything else becomes PersistenceError naming the failed step
    """

    def __init__(self, name: str):
        self.name = name
        self.completed: list[str] = []
        self.current: str | None = None

    @contextmanager
    def step(self, step_name: str):
        self.current = step_name
        yield
        db.session.flush()
        self.completed.append(step_name)
        self.current = None

    def commit(self) -> None:
        self.current = "commit"
        db.session.commit()
        self.current = None

    def _fail(self, exc: Exception) -> PersistenceError:
        current_app.logger.warning(
            "%s rolled back at step %s (completed: %s): %s",
            self.name, self.current, ", ".join(self.completed) or "none", exc,
        )
        return PersistenceError(
            "Operation failed, please retry",
            step=self.current,
            details={"operation": self.name, "rolled_back_steps": list(self.completed)},
        )

    @contextmanager
    def transaction(self, *, retry_on: tuple = (), passthrough: tuple = ()):
        try:
            yield self
            self.commit()
        except RETRYABLE_ERRORS + tuple(retry_on):
            db.session.rollback()
            raise
        except (ValueError, PersistenceError) + tuple(passthrough):
            db.session.rollback()
            raise
        except Exception as exc:
            db.session.rollback()
            raise self._fail(exc) from exc


def run_unit_of_work(func, *, name: str, retry_on: tuple = (), attempts: int = 3):
    """run_with_retry, reporting exhausted concurrency retries as PersistenceError."""
    try:
        return run_with_retry(func, attempts=attempts, retry_on=retry_on)
    except RETRYABLE_ERRORS + tuple(retry_on) as exc:
        current_app.logger.warning("%s gave up after %d attempts: %s", name, attempts, exc)
        raise PersistenceError(
            "Operation failed, please retry",
            details={"operation": name, "reason": "concurrent modification"},
        ) from exc
