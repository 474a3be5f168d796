# Overview: Unit-of-work helpers: row locks, commit, rollback and bounded retry.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch lost updates on SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Run func as one unit of work.

    - Any exception rolls the session back before it propagates, so a failed
      operation never leaves partial rows behind.
    - OperationalError (locks, deadlocks) and StaleDataError (optimistic
      locking) are retried with exponential backoff; once attempts run out
      they surface as ConcurrencyConflict.

    func is expected to commit on success.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %s attempts: %s", attempts, exc)
                raise ConcurrencyConflict(
                    "The record was modified concurrently; retry the operation",
                    details={"attempts": attempts, "cause": type(exc).__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

