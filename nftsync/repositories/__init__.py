"""
Repositories.

Data access layer for the sync tables.
"""

from nftsync.repositories.base import BaseRepository
from nftsync.repositories.nft_sync_lease_repository import NftSyncLeaseRepository
from nftsync.repositories.nft_sync_state_repository import NftSyncStateRepository
from nftsync.repositories.nft_token_repository import NftTokenRepository
from nftsync.repositories.nft_transfer_repository import NftTransferRepository

__all__ = [
    "BaseRepository",
    "NftSyncLeaseRepository",
    "NftSyncStateRepository",
    "NftTokenRepository",
    "NftTransferRepository",
]
