"""Database session factory setup."""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool


def setup_db_session(db_url: str, pool_size: int = 50) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    PostgreSQL (postgresql+psycopg://...) gets a bounded connection pool.
    SQLite (sqlite+aiosqlite://...) gets one connection per session and a
    generous busy timeout so concurrent writers wait for the database lock
    instead of failing.

    Args:
        db_url: Database connection URL
        pool_size: Maximum number of connections in the pool (PostgreSQL only)

    Returns:
        Async session factory for creating database sessions
    """
    if db_url.startswith("sqlite"):
        engine = create_async_engine(
            db_url,
            poolclass=NullPool,
            connect_args={"timeout": 30},
            echo=False,
        )
    else:
        engine = create_async_engine(
            db_url,
            pool_size=pool_size,
            max_overflow=0,  # No overflow beyond pool_size
            pool_pre_ping=True,
            echo=False,  # SQL is not logged; structlog carries application events
        )

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


def dialect_insert(session: AsyncSession, model: Any):
    """Return an INSERT construct supporting ``on_conflict_do_*`` for the session's database.

    PostgreSQL and SQLite share the ON CONFLICT syntax; repositories build
    their UPSERTs through this helper so both backends run the same code.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
