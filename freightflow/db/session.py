"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager

from freightflow.core.config import settings
from freightflow.core.logging import get_logger

logger = get_logger(__name__)


def build_engine(url: str):
    """Create an engine with pool options that suit the backend."""
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        sqlite_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        _enable_sqlite_savepoints(sqlite_engine)
        return sqlite_engine
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
    )


def _enable_sqlite_savepoints(sqlite_engine):
    """pysqlite defers BEGIN on its own; let SQLAlchemy emit it so SAVEPOINT works."""

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and verify the schema.

    Schema is managed by Alembic migrations. Run `alembic upgrade head`
    before first startup. With DEBUG=true missing tables are created
    directly from the models.
    """
    from sqlalchemy import inspect

    from freightflow.db.preflight import run_db_preflight
    run_db_preflight()

    from freightflow.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ["messages", "classifications", "shipments", "shipment_documents"]

    missing = [t for t in required_tables if t not in existing_tables]
    if not missing:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")
        return

    logger.warning(f"Missing required tables: {missing}")
    if settings.DEBUG:
        logger.warning("DEBUG=true: creating tables from models (not for production)")
        Base.metadata.create_all(bind=engine)
    else:
        logger.error("Run `alembic upgrade head` before starting the service")
