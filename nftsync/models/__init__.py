"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from nftsync.models.base import Base
from nftsync.models.nft_sync_lease import NftSyncLease
from nftsync.models.nft_sync_state import NftSyncState
from nftsync.models.nft_token import NftToken
from nftsync.models.nft_transfer import NftTransfer

__all__ = [
    "Base",
    "NftSyncLease",
    "NftSyncState",
    "NftToken",
    "NftTransfer",
]
