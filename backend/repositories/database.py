"""
Database engine, session factory and request-scoped session dependency.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from models.config import settings


def create_db_engine(database_url: str | None = None):
    """
    Create database engine with appropriate configuration.

    SQLite gets NullPool (a fresh connection per session) so concurrent
    requests never share a connection; other databases get a tuned QueuePool.

    Args:
        database_url: Override for settings.DATABASE_URL

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 15},
            poolclass=NullPool,
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session with automatic cleanup."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
