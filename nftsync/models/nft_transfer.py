"""
NFT Transfer model.

Append-only log of Transfer events, one row per on-chain log.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nftsync.models.base import Base


class NftTransfer(Base):
    """
    Single Transfer log.

    Identified by ``(tx_hash, log_index)``. Rows are never updated;
    they are only deleted when a reorg retracts their block.
    """

    __tablename__ = "nft_transfers"
    __table_args__ = (
        UniqueConstraint(
            "tx_hash", "log_index", name="uq_nft_transfers_tx_hash_log_index"
        ),
        Index("ix_nft_transfers_contract_token", "contract_address", "token_id"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Identity
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Event data (addresses normalized to lowercase)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    from_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )
    to_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )

    # Block information
    block_number: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True
    )
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_timestamp: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )  # unix seconds
    tx_index: Mapped[int] = mapped_column(Integer, nullable=False)

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<NftTransfer(tx_hash={self.tx_hash[:16]}..., "
            f"log_index={self.log_index}, token_id={self.token_id}, "
            f"block={self.block_number})>"
        )

    @property
    def transfer_key(self) -> tuple[int, int, int]:
        """Chain ordering key."""
        return (self.block_number, self.tx_index, self.log_index)

    @property
    def is_mint(self) -> bool:
        """Check if the transfer minted the token."""
        return int(self.from_address, 16) == 0
