"""Database session management with connection pooling and unit-of-work scope"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from lending_ledger.config import settings
from lending_ledger.domain.exceptions import PersistenceError
from lending_ledger.infrastructure.database.models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite gets its own connect args and default pool"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create all ledger tables if they do not exist"""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    One all-or-nothing unit of work.

    Commits when the block exits cleanly; on any exception rolls back and
    re-raises. Raw SQLAlchemy failures surface as PersistenceError so callers
    only ever see ledger exceptions.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Storage failure, unit of work rolled back: {e}")
        raise PersistenceError(f"Storage failure: {e.__class__.__name__}") from e
    except BaseException:
        db.rollback()
        raise
