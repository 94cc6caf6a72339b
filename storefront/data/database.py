# storefront/data/database.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from storefront.domain.errors import StorefrontError, StorageFailure
from storefront.utils.settings import DATABASE_URL, DB_POOL_TIMEOUT
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def make_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    # a checkout must not hang on an exhausted pool
    return create_engine(url, pool_pre_ping=True, pool_timeout=DB_POOL_TIMEOUT)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


RETRYABLE_ERRORS = (OperationalError, PoolTimeoutError, DisconnectionError)


def _storage_failure(e: SQLAlchemyError) -> StorageFailure:
    # pool exhaustion and dropped connections are worth another try
    return StorageFailure(retryable=isinstance(e, RETRYABLE_ERRORS))


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    One unit of work: commit on success, full rollback on any failure.

    Domain errors pass through untouched, SQLAlchemy errors become
    StorageFailure, and anything else (including cancellation) is re-raised
    after the rollback.
    """
    try:
        yield db
        db.commit()
    except StorefrontError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Transaction rolled back: {e}")
        raise _storage_failure(e) from e
    except BaseException:
        db.rollback()
        raise


@contextmanager
def reading(db: Session) -> Iterator[Session]:
    """Read-only counterpart of atomic(): nothing to commit, errors still become StorageFailure."""
    try:
        yield db
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Read failed: {e}")
        raise _storage_failure(e) from e
