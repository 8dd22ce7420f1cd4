# Overview: Service-layer operations for concurrency; unit of work and row locking.

from __future__ import annotations

import logging
import threading
from contextlib import nullcontext

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import BillingError, PersistenceFailure


logger = logging.getLogger(__name__)

# SQLite allows a single writer. Holding this for the whole unit of work makes
# check-then-write sequences (stock check + decrement, counter read + increment)
# indivisible between threads of this process.
_sqlite_writer_lock = threading.RLock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _writer_lock():
    if db.engine.dialect.name == "sqlite":
        return _sqlite_writer_lock
    return nullcontext()


def with_transaction(func, *, description: str = "transaction"):
    """
    Run func() as one atomic unit of work.

    Commits when func returns; on any exception every write made inside it
    is rolled back. BillingError passes through unchanged, storage errors
    surface as PersistenceFailure. Never retries.
    """
    with _writer_lock():
        try:
            result = func()
            db.session.commit()
            return result
        except BillingError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("%s rolled back after storage error: %s", description, exc)
            raise PersistenceFailure(
                f"{description} failed; nothing was saved",
                details={"cause": exc.__class__.__name__},
            ) from exc
        except Exception:
            db.session.rollback()
            raise
