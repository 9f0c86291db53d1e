"""
Database connection and session management for Forvm.

Supports PostgreSQL with pgvector and SQLite (default).
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool

from forvm.config import get_database_url, ensure_data_dir
from forvm.models import Base

logger = logging.getLogger(__name__)

_engine = None
_SessionLocal = None


def _is_postgres_url(db_url: str) -> bool:
    return db_url.startswith("postgresql") or db_url.startswith("postgres")


def _create_engine(db_url: str):
    """Create a new SQLAlchemy engine for the given URL."""
    if _is_postgres_url(db_url):
        engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def create_pgvector_extension(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("CREATE EXTENSION IF NOT EXISTS vector")
            cursor.close()

        return engine

    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory db
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        ensure_data_dir()
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def get_engine(db_url: Optional[str] = None):
    """Get SQLAlchemy engine, creating it lazily. Accepts optional URL override for testing."""
    global _engine

    if _engine is not None:
        return _engine

    _engine = _create_engine(db_url or get_database_url())
    return _engine


def get_session_factory():
    """Get session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=get_engine()
        )
    return _SessionLocal


def get_session() -> Session:
    """
    Get a new database session.

    Usage:
        session = get_session()
        try:
            # do work
            session.commit()
        finally:
            session.close()

    Or use the context manager:
        with session_scope() as session:
            # do work (auto-commits on success, rolls back on exception)
    """
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Transactional scope: auto-commits on success, rolls back on exception."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine=None):
    """
    Create all tables. Safe to call multiple times.

    For PostgreSQL, also ensures the pgvector extension and the HNSW index exist.
    """
    eng = engine or get_engine()
    postgres = eng.dialect.name == "postgresql"

    if postgres:
        with eng.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()

    Base.metadata.create_all(bind=eng)

    if postgres:
        with eng.connect() as conn:
            try:
                conn.execute(text("""
                    CREATE INDEX IF NOT EXISTS idx_posts_embedding_hnsw
                    ON posts
                    USING hnsw (embedding vector_cosine_ops)
                """))
                conn.commit()
            except Exception as e:
                logger.warning("Could not create HNSW index (will be created when embeddings exist): %s", e)


def reset_engine():
    """Reset engine and session factory (for testing)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionLocal = None


def check_connection() -> dict:
    """Check database connection and return status info."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            if engine.dialect.name == "postgresql":
                version = conn.execute(text("SELECT version()")).scalar()
                pgvector_version = conn.execute(text(
                    "SELECT extversion FROM pg_extension WHERE extname = 'vector'"
                )).scalar()
                return {
                    "status": "connected",
                    "type": "postgres",
                    "version": version,
                    "pgvector_version": pgvector_version,
                }
            version = conn.execute(text("SELECT sqlite_version()")).scalar()
            return {
                "status": "connected",
                "type": "sqlite",
                "version": version,
            }
    except Exception as e:
        return {
            "status": "error",
            "error": str(e),
        }
