# Overview: Transaction helpers shared by the order, stock and catalog services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


class PersistenceFailure(RuntimeError):
    """
    Storage layer error. The session has been rolled back; nothing from the
    failed operation was committed and no event was published.
    """


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work (which must commit at its end) atomically.

    - OperationalError (locks, deadlocks) and StaleDataError (optimistic
      locking) are retried with exponential backoff.
    - Any other SQLAlchemyError, or exhausted retries, roll back and raise
      PersistenceFailure.
    - Domain errors raised by func roll back and propagate unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise PersistenceFailure("Database unavailable, operation not applied") from exc
            logger.warning("Retrying after concurrency failure (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceFailure("Database error, operation not applied") from exc
        except Exception:
            db.session.rollback()
            raise
