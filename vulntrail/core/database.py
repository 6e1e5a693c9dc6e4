"""Engine, session factory and request-scoped session dependencies."""

from collections.abc import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vulntrail.core.config import settings

# Sessions cross threads (FastAPI threadpool, ingest workers).
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    pool_pre_ping=True,
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a read-write session for the request; the caller owns commit or rollback."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def begin_read_snapshot(db: Session) -> Session:
    """
    Pin the session to one snapshot for the rest of its transaction.

    On PostgreSQL the connection is switched to REPEATABLE READ so a count and
    the page that follows it see the same committed state (never a batch
    mid-flight). SQLite serializes writers, so the default level already holds.
    """
    if db.get_bind().dialect.name == "postgresql":
        db.connection(execution_options={"isolation_level": "REPEATABLE READ"})
    return db


def get_read_db() -> Generator[Session, None, None]:
    """Dependency for read-only endpoints: one consistent snapshot per request."""
    db = SessionLocal()
    try:
        yield begin_read_snapshot(db)
    finally:
        db.rollback()
        db.close()


def check_db_connected(db: Session) -> bool:
    """Probe the connection with SELECT 1; False when the database cannot be reached."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True
