"""
NFT Sync Lease repository.

Data access layer for single-owner sync claims.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from nftsync.models.nft_sync_lease import NftSyncLease
from nftsync.repositories.base import BaseRepository


class NftSyncLeaseRepository(BaseRepository[NftSyncLease]):
    """Repository for sync leases."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(NftSyncLease, session)

    async def get_lease(
        self, contract_address: str, sync_type: str
    ) -> NftSyncLease | None:
        """Get lease row, locked for update."""
        return await self.get_by(
            for_update=True,
            contract_address=contract_address,
            sync_type=sync_type,
        )

    async def delete_owned(
        self, contract_address: str, sync_type: str, owner_id: str
    ) -> bool:
        """
        Delete a lease if held by the given owner.

        Args:
            contract_address: Collection contract
            sync_type: full or incremental
            owner_id: Expected holder

        Returns:
            True if a lease was released
        """
        deleted = await self.delete_by(
            contract_address=contract_address,
            sync_type=sync_type,
            owner_id=owner_id,
        )
        return deleted > 0
