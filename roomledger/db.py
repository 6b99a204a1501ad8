import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .config import get_settings
from .errors import DomainError, InternalError

logger = logging.getLogger("roomledger.db")

DATABASE_URL = get_settings().database_url

# Build the SQLAlchemy engine with backend-specific settings.
# - SQLite (dev/tests): allow cross-thread access since FastAPI runs sync endpoints in a threadpool.
# - Server DBs (MySQL/Postgres): pool with pre-ping so dropped connections are replaced transparently.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
    )

# One session per request; autocommit and autoflush disabled for explicit transaction control
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator:
    """
    FastAPI dependency.

    Yields a database session for the lifetime of the request and guarantees it
    is closed afterwards, even if an exception is raised.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a unit of work as one transaction.

    Commits when the block exits cleanly. Any exception rolls the transaction back
    before it propagates; storage errors surface as InternalError so the caller never
    sees a half-applied write.

        with atomic(db):
            ensure_room_available(db, room_id, start, end)
            db.add(booking)
    """
    try:
        yield db
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("storage failure, transaction rolled back")
        raise InternalError("Storage failure") from exc
    except Exception:
        db.rollback()
        raise


def supports_row_locks(db: Session) -> bool:
    # SQLite has no SELECT ... FOR UPDATE; it serializes writers at the file level instead
    return db.get_bind().dialect.name != "sqlite"
