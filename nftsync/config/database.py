"""
Database engine and session factory.

Builds the async SQLAlchemy engine used by the token store and the
sync state tracker.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nftsync.config.settings import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create async engine for the configured database.

    Args:
        settings: Application settings

    Returns:
        AsyncEngine bound to the asyncpg driver
    """
    return create_async_engine(
        settings.async_database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create session maker for an engine.

    Args:
        engine: Async engine

    Returns:
        Session maker that keeps objects usable after commit
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
