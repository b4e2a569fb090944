"""
NFT Sync Lease model.

Claim record that keeps a single sync loop per contract and sync type.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nftsync.models.base import Base


class NftSyncLease(Base):
    """Time-limited ownership of a sync state row."""

    __tablename__ = "nft_sync_leases"
    __table_args__ = (
        UniqueConstraint(
            "contract_address", "sync_type", name="uq_nft_sync_leases_contract_type"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
