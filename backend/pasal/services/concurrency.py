# Overview: Row locking, retry and compare-and-swap helpers shared by the write services.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-modify-write sequences.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (its writer lock serializes
    instead), other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work, retrying on lock and version conflicts.

    Retries on OperationalError (deadlocks, busy database) and
    StaleDataError (Order.version_id mismatch). Everything else rolls back
    and propagates.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def increment_if(model, row_id: int, column, *conditions) -> bool:
    """
    Atomically add 1 to `column` on one row when every condition holds.

    Issues a single UPDATE ... WHERE id = :id AND <conditions>, so the check
    and the write cannot interleave with a concurrent request. Returns True
    when the row was updated. Does not commit.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, *conditions)
        .values({column.key: column + 1})
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1
