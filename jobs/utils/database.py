"""Database setup for background tasks."""
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from nftsync.config.settings import Settings


def create_task_engine(settings: Settings) -> AsyncEngine:
    """Create engine for tasks; NullPool keeps connections off shared worker threads."""
    return create_async_engine(
        settings.async_database_url,
        echo=False,
        poolclass=NullPool,
    )
