# Overview: Service-layer operations for concurrency; locking and retry helpers shared by all writers.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_keyed_locks: dict[tuple[str, object], threading.Lock] = {}
_keyed_locks_guard = threading.Lock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def keyed_lock(namespace: str, key):
    """
    Process-local mutual exclusion for one (namespace, key) pair.

    Serializes writers inside this process (e.g. two cashier threads hitting
    the same inventory item). Writers in other processes are still caught by
    version_id optimistic locking and run_with_retry.
    """
    with _keyed_locks_guard:
        lock = _keyed_locks.get((namespace, key))
        if lock is None:
            lock = threading.Lock()
            _keyed_locks[(namespace, key)] = lock
    with lock:
        yield


def _default_attempts() -> int:
    return int(current_app.config.get("DB_RETRY_ATTEMPTS", 3))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    if attempts is None:
        attempts = _default_attempts()
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
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

