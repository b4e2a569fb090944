"""
NFT Sync State model.

Tracks the synchronization state of the Transfer scan.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nftsync.models.base import Base


class NftSyncState(Base):
    """
    Tracks NFT synchronization state.

    Used to:
    - Resume sync after restart
    - Know which blocks are final
    - Track sync counters and errors
    """

    __tablename__ = "nft_sync_state"
    __table_args__ = (
        UniqueConstraint(
            "contract_address", "sync_type", name="uq_nft_sync_state_contract_type"
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Sync identification
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    sync_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # full, incremental

    # Progress
    start_block: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    current_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    finalized_to_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    head_block: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Statistics
    tokens_discovered: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    tokens_enriched: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    transfers_processed: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Configuration snapshot
    confirmations: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
