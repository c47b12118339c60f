"""
utils/transactions.py  –  Unit-of-work runner with bounded conflict retry

    order = run_in_transaction(db, lambda: machine.apply(...), label="transition")

``work`` reads and mutates through the session without committing; the
runner commits. Optimistic-version mismatches and lock/deadlock errors are
retried, connection failures surface as StoreUnavailable, and DispatchError
from the work itself rolls back and propagates untouched.
"""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from utils.exceptions import ConflictRetryExhausted, DispatchError, StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# MySQL: 1205 lock wait timeout, 1213 deadlock
_LOCK_ERROR_CODES = {1205, 1213}


def is_lock_conflict(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", ()) or ()
    if args and args[0] in _LOCK_ERROR_CODES:
        return True
    text = str(exc).lower()
    return "deadlock" in text or "database is locked" in text or "lock wait timeout" in text


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    retries: Optional[int] = None,
    label: str = "transaction",
) -> T:
    attempts = 1 + (settings.STORE_CONFLICT_RETRIES if retries is None else retries)

    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except DispatchError:
            db.rollback()
            raise
        except StaleDataError as e:
            db.rollback()
            logger.warning(f"{label}: concurrent update detected (attempt {attempt}/{attempts}): {e}")
        except OperationalError as e:
            db.rollback()
            if not is_lock_conflict(e):
                logger.error(f"{label}: store unavailable: {e}")
                raise StoreUnavailable(reason=str(e.orig) if e.orig else str(e)) from e
            logger.warning(f"{label}: lock conflict (attempt {attempt}/{attempts}): {e}")
        except PoolTimeoutError as e:
            db.rollback()
            logger.error(f"{label}: connection pool exhausted: {e}")
            raise StoreUnavailable() from e
        except DBAPIError as e:
            db.rollback()
            if e.connection_invalidated:
                logger.error(f"{label}: connection lost: {e}")
                raise StoreUnavailable() from e
            raise

    raise ConflictRetryExhausted(f"{label} could not be completed after {attempts} attempts", attempts=attempts)
