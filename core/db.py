# core/db.py
"""
Database management for the MLM commission engine.
Single database, session factory and transaction helpers.
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models import Base

logger = logging.getLogger(__name__)

# Database engines
_engine = None
_SessionFactory = None


def create_db_engine(database_url: str):
    """
    Create an engine for the given URL.

    SQLite gets explicit transaction control so that SAVEPOINTs work and
    every transaction takes the write lock up front (BEGIN IMMEDIATE).
    Without it concurrent writers can deadlock on lock upgrade.
    """
    is_sqlite = database_url.startswith("sqlite")

    engine = create_engine(
        database_url,
        echo=False,
        pool_pre_ping=not is_sqlite,
        connect_args={"timeout": 30, "check_same_thread": False} if is_sqlite else {}
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL, "sqlite:///mlm.db")
        _engine = create_db_engine(database_url)
        logger.info(f"Database engine created: {database_url}")
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(bind=engine)
        logger.info("Session factory created")
    return _SessionFactory


def configure_session_factory(engine) -> None:
    """Bind the module-level session factory to an existing engine."""
    global _engine, _SessionFactory
    _engine = engine
    _SessionFactory = sessionmaker(bind=engine)
    logger.info("Session factory rebound to external engine")


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        Session instance
    """
    factory = get_session_factory()
    return factory()


@contextmanager
def get_db_session_ctx():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session_ctx() as session:
            user = session.query(User).first()
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        session.close()


def setup_database():
    """Initialize database - create all tables."""
    logger.info("Setting up database...")
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database setup completed")
