# Overview: Transaction and retry helpers shared by every state-changing service call.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute one unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError.
    Any other exception rolls the session back and propagates, so a failed
    operation never leaves a partial write behind.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Transient database error, retrying (attempt %d/%d)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
