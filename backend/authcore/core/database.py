"""Database configuration and session management"""

from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from authcore.config import settings
from authcore.core.exceptions import DataAccessError
import logging

logger = logging.getLogger(__name__)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL

    Pool sizing only applies to server databases; SQLite gets a busy
    timeout so concurrent writers wait for each other instead of failing.
    """
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo,
        )

        # SQLite leaves ON DELETE actions unenforced unless asked per connection
        @event.listens_for(sqlite_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=echo,
    )


engine = create_db_engine(settings.get_database_url(), echo=settings.DEBUG)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class for models
Base = declarative_base()

# Import models after Base is defined so metadata is populated.
from authcore import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """
    Yield a database session and close it afterwards

    Yields:
        Session: Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Run a block as one atomic unit against the session

    Commits when the block finishes. Any exception, including a
    cancellation that interrupts the block before commit, rolls the
    whole unit back. Store failures are re-raised as DataAccessError.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Database error, unit of work rolled back: %s", exc)
        raise DataAccessError() from exc
    except BaseException:
        db.rollback()
        raise


def init_db(bind: Optional[Engine] = None) -> None:
    """Create all tables that do not exist yet"""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ensured")
