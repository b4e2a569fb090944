"""
NFT Sync State repository.

Data access layer for sync checkpoints.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from nftsync.models.nft_sync_state import NftSyncState
from nftsync.repositories.base import BaseRepository


class NftSyncStateRepository(BaseRepository[NftSyncState]):
    """Repository for sync state rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(NftSyncState, session)

    async def get_state(
        self, contract_address: str, sync_type: str, for_update: bool = False
    ) -> NftSyncState | None:
        """
        Get sync state for a contract and sync type.

        Args:
            contract_address: Collection contract
            sync_type: full or incremental
            for_update: Lock the row

        Returns:
            State row or None
        """
        return await self.get_by(
            for_update=for_update,
            contract_address=contract_address,
            sync_type=sync_type,
        )
