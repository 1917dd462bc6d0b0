from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from costledger.core.config import settings
from costledger.core.errors import ConcurrencyConflict
from costledger.core.observability import log_warning

T = TypeVar("T")

# lock_not_available, deadlock_detected, serialization_failure
CONTENTION_SQLSTATES = frozenset({"55P03", "40P01", "40001"})


def is_contention_error(exc: OperationalError) -> bool:
    """True when the driver reports lock or serialization contention rather than a real fault."""
    orig = exc.orig
    # psycopg exposes ``sqlstate``, psycopg2 ``pgcode``.
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate in CONTENTION_SQLSTATES
    # SQLite has no SQLSTATE; a busy database file is its only contention signal.
    return "database is locked" in str(orig).lower()


def run_atomic(
    db: Session,
    work: Callable[[], T],
    *,
    operation: str,
    max_attempts: int | None = None,
) -> T:
    """
    Run ``work`` as one transaction: commit when it returns, roll back when it raises.

    Lock timeouts, deadlocks, serialization failures and stale version writes
    roll back and re-run the whole unit, which re-reads the rows it locks.
    After ``max_attempts`` the conflict is raised to the caller as
    ``ConcurrencyConflict``. Any other error, including an ``OperationalError``
    that is not contention, rolls back and propagates unchanged.
    """
    attempts = max_attempts or settings.ledger_max_attempts
    attempt = 0
    while True:
        attempt += 1
        try:
            result = work()
            db.commit()
            return result
        except StaleDataError as exc:
            conflict: Exception = exc
        except OperationalError as exc:
            if not is_contention_error(exc):
                db.rollback()
                raise
            conflict = exc
        except Exception:
            db.rollback()
            raise

        db.rollback()
        log_warning(
            "ledger.concurrency_conflict",
            operation=operation,
            attempt=attempt,
            max_attempts=attempts,
            error=str(conflict),
        )
        if attempt >= attempts:
            raise ConcurrencyConflict(
                f"{operation} could not be committed after {attempts} attempts",
                details={"operation": operation, "attempts": attempts},
            ) from conflict
