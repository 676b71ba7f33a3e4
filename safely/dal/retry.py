import logging
import time
from functools import wraps

from pymysql.err import OperationalError
from sqlalchemy.exc import DBAPIError

from safely.dal.errors import LockAcquisitionFailed

log = logging.getLogger(__name__)

# MySQL: 1205 lock wait timeout, 1213 deadlock
MYSQL_LOCK_CODES = (1205, 1213)
# PostgreSQL: deadlock_detected, lock_not_available, serialization_failure
PG_LOCK_STATES = ("40P01", "55P03", "40001")


def _driver_error(exc: BaseException) -> BaseException:
    if isinstance(exc, LockAcquisitionFailed) and exc.__cause__ is not None:
        exc = exc.__cause__
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        exc = exc.orig
    return exc


def is_lock_conflict(exc: BaseException) -> bool:
    """True for deadlocks and lock wait timeouts reported by the driver."""
    if isinstance(exc, LockAcquisitionFailed) and exc.conflict:
        return True
    orig = _driver_error(exc)
    if isinstance(orig, OperationalError) or type(orig).__name__ == "OperationalError":
        code = orig.args[0] if orig.args else None
        if code in MYSQL_LOCK_CODES:
            return True
    state = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return state in PG_LOCK_STATES


def retry_deadlock(max_tries: int = 3, base_sleep: float = 0.1):
    """Retry decorator for deadlocks and lock wait timeouts."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            tries = 0
            while True:
                try:
                    return fn(*args, **kwargs)
                except Exception as exc:
                    if is_lock_conflict(exc) and tries < max_tries - 1:
                        delay = base_sleep * (2 ** tries)
                        log.info("lock conflict in %s, retry %d in %.2fs", fn.__qualname__, tries + 1, delay)
                        time.sleep(delay)
                        tries += 1
                        continue
                    raise

        return wrapper

    return decorator
