import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from core.config import settings
from core.exceptions import ConcurrentUpdateError, PersistenceError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# Configure engine based on database type
if settings.DATABASE_URL.startswith("sqlite"):
    # For SQLite, use StaticPool for in-memory databases and enable foreign keys
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in settings.DATABASE_URL else None,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Generator:
    """Commit everything written inside the block as one unit of work.

    Any exception rolls the whole unit back. Database failures are
    re-raised as workflow errors: a version mismatch detected at flush
    becomes ``ConcurrentUpdateError``, anything else ``PersistenceError``.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.info("Optimistic lock mismatch: %s", exc)
        raise ConcurrentUpdateError("The order was modified by someone else. Refresh and try again.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Database failure, unit of work rolled back: %s", exc)
        raise PersistenceError("The operation could not be saved. Please try again.") from exc
    except Exception:
        db.rollback()
        raise
