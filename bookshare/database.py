"""
Database Configuration Module

SQLAlchemy 2.0 setup for the Bookshare API.

We use synchronous SQLAlchemy with the "session per request" pattern:
1. Request arrives → get_db() opens a session
2. Route and services use that session
3. Session is closed when the request ends

The users table doubles as the credential store: each row holds the
fingerprint of the one refresh token currently valid for that user
(see services/credentials.py).
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from bookshare.config import get_settings

settings = get_settings()


# =============================================================================
# Engine and Session Factory
# =============================================================================
# pool_pre_ping tests connections before use so stale pooled connections
# are replaced transparently.

engine = create_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
    echo=settings.debug,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Alembic reads Base.metadata to autogenerate migrations.
    """
    pass


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI.

    Code before yield sets up the session, code after yield closes it,
    even when the route raised.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """
    Create all database tables.

    Development and seeding helper; production uses Alembic migrations.
    """
    Base.metadata.create_all(bind=engine)
