from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from erp.config import settings
from erp.errors import StorageError

logger = logging.getLogger(__name__)

engine = create_engine(settings.database_url_normalized, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {'40001', '40P01'}

P = ParamSpec('P')
R = TypeVar('R')


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_retryable(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, 'sqlstate', None) or getattr(orig, 'pgcode', None)
    return sqlstate in RETRYABLE_SQLSTATES


def transactional(fn: Callable[P, R]) -> Callable[P, R]:
    """Run a service call as one unit of work on the session passed as its first argument.

    The call commits on success and rolls back on any error. Transient
    serialization or deadlock failures re-run the whole call from scratch,
    up to ``settings.transaction_retry_limit`` attempts.
    """

    @wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        db: Session = args[0]
        attempts = max(settings.transaction_retry_limit, 1)
        for attempt in range(1, attempts + 1):
            try:
                result = fn(*args, **kwargs)
                db.commit()
                return result
            except DBAPIError as exc:
                db.rollback()
                if not _is_retryable(exc):
                    raise
                if attempt == attempts:
                    logger.error('%s gave up after %d attempts', fn.__name__, attempts)
                    raise StorageError('The database is busy, please try again') from exc
                logger.warning('%s hit a transient conflict, retrying (attempt %d/%d)', fn.__name__, attempt, attempts)
            except Exception:
                db.rollback()
                raise
        raise StorageError('The database is busy, please try again')

    return wrapper
