"""
Base repository.

Filter-based helpers shared by the sync repositories.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nftsync.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository over one model.

    Repositories never commit: the token store and the state tracker
    open the session and decide the transaction boundary, so a batch of
    transfers and the ownership updates it causes land together.

    Example:
        class NftTokenRepository(BaseRepository[NftToken]):
            def __init__(self, session: AsyncSession):
                super().__init__(NftToken, session)
    """

    def __init__(self, model: type[ModelType], session: AsyncSession) -> None:
        self.model = model
        self.session = session

    async def get_by(self, for_update: bool = False, **filters: Any) -> ModelType | None:
        """
        Get the single row matching column filters.

        Args:
            for_update: Lock the row (SELECT ... FOR UPDATE; ignored by SQLite)
            **filters: Column filters forming a unique key

        Returns:
            Row or None
        """
        stmt = select(self.model).filter_by(**filters)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **data: Any) -> ModelType:
        """Add a row and flush so defaults and the primary key are populated."""
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def count(self, **filters: Any) -> int:
        """Count rows matching column filters."""
        stmt = select(func.count()).select_from(self.model).filter_by(**filters)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def delete_by(self, **filters: Any) -> int:
        """
        Delete rows matching column filters.

        Returns:
            Number of deleted rows
        """
        stmt = delete(self.model).filter_by(**filters)
        result = await self.session.execute(stmt)
        return result.rowcount or 0
