"""Database engine and session factory setup."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    The pool is sized for the request handlers plus one short transaction per
    pipeline write; batches never hold a connection while waiting on the
    generation API.

    Args:
        db_url: PostgreSQL connection URL (postgresql+psycopg://...)
        pool_size: Maximum number of connections in the pool

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,
        pool_pre_ping=True,
        echo=False,
    )

    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def close_db_session(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Dispose of the engine behind a session factory and its pooled connections."""
    await session_factory.kw["bind"].dispose()
