"""
Database Configuration and Session Management
============================================

This module provides the database engine, session factory, and table creation
functionality for the trade-finance bookkeeping service.

PostgreSQL is the production store. SQLite is supported for development and
tests: it has no row locks, so every SQLite transaction is opened with
BEGIN IMMEDIATE, which serializes writers and keeps the same invariants.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import DBAPIError, OperationalError, ProgrammingError

from config import Config
from models import Base
from utils.exceptions import ConflictError

logger = logging.getLogger(__name__)

engine: Optional[Engine] = None

# Session factory, bound in init_engine()
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

# PostgreSQL SQLSTATE codes that mean "retry the transaction"
SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}


def _configure_sqlite(sqlite_engine: Engine) -> None:
    """Foreign keys on, and writer-serializing transactions for SQLite"""

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create the engine and bind the session factory to it"""
    global engine

    url = database_url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if engine is not None:
        engine.dispose()

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _configure_sqlite(engine)
        logger.info("✅ DATABASE: SQLite engine initialized (BEGIN IMMEDIATE writer serialization)")
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=Config.DB_POOL_SIZE,
            max_overflow=Config.DB_MAX_OVERFLOW,
            pool_pre_ping=True,    # Validate connections before use
            pool_recycle=Config.DB_POOL_RECYCLE,
            pool_timeout=Config.DB_POOL_TIMEOUT,
            echo=echo,
            connect_args={
                "connect_timeout": 10,
                "application_name": "tradefin_ledger",  # For monitoring in pg_stat_activity
            },
        )
        logger.info(
            f"✅ DATABASE: PostgreSQL engine initialized "
            f"(pool {Config.DB_POOL_SIZE}+{Config.DB_MAX_OVERFLOW})"
        )

    SessionLocal.configure(bind=engine)
    return engine


def get_engine() -> Engine:
    if engine is None:
        return init_engine()
    return engine


def get_session() -> Session:
    """Get a new database session"""
    get_engine()
    return SessionLocal()


def is_serialization_failure(error: Exception) -> bool:
    """True when the database aborted the transaction and it can be retried"""
    if not isinstance(error, DBAPIError):
        return False
    code = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if code in SERIALIZATION_FAILURE_CODES:
        return True
    message = str(error.orig).lower()
    return "could not serialize access" in message or "deadlock detected" in message


def handle_database_error(error: Exception) -> Exception:
    """Map retry-able database failures to ConflictError, pass anything else through"""
    if is_serialization_failure(error):
        logger.warning(f"🔁 SERIALIZATION_FAILURE: {error}")
        return ConflictError("concurrent update detected, please retry")
    return error


@contextmanager
def managed_session(serializable: bool = False):
    """
    Sync context manager for database sessions.

    Commits on success, rolls back the whole transaction on any exception and
    re-raises it. Retry-able serialization failures are raised as ConflictError.
    """
    session = get_session()
    if serializable and session.get_bind().dialect.name == "postgresql":
        session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        mapped = handle_database_error(e)
        if mapped is not e:
            raise mapped from e
        logger.debug(f"Database session rolled back: {type(e).__name__}: {e}")
        raise
    finally:
        session.close()


def create_tables() -> bool:
    """Create all database tables if they don't exist"""
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")

        try:
            Base.metadata.create_all(bind=get_engine(), checkfirst=True)
        except ProgrammingError as e:
            # Indexes that already exist are expected on re-runs
            if "already exists" in str(e):
                logger.info(f"⚠️ Some database objects already exist (this is normal): {e}")
            else:
                raise

        logger.info(f"✅ Database schema verified: {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}", exc_info=True)
        return False


def test_connection() -> bool:
    """Test database connection"""
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.debug("✅ Database connection test successful")
            return True
    except OperationalError as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
