"""Database engine and session factory setup."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_engine(db_url: str, pool_size: int = 50) -> AsyncEngine:
    """Create the async engine.

    Args:
        db_url: Connection URL (postgresql+psycopg://... in production,
            sqlite+aiosqlite://... in tests)
        pool_size: Maximum number of connections in the pool

    Returns:
        Async engine bound to the given database
    """
    return create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,  # No overflow beyond pool_size
        pool_pre_ping=True,
        echo=False,  # SQL is not logged, structlog events are used instead
    )


def setup_db_session(db_url: str, pool_size: int = 50) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database connection URL
        pool_size: Maximum number of connections in the pool

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_engine(db_url, pool_size=pool_size)

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Rows stay readable after commit for response building
    )
