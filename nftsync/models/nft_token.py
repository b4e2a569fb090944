"""
NFT Token model.

One row per token of the collection: current owner plus a pointer
to the transfer that produced it.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nftsync.models.base import Base


class NftToken(Base):
    """
    Current state of a single token.

    The ``last_transfer_*`` columns form the ordering key
    ``(block, tx_index, log_index)`` used to reject stale or
    duplicate ownership updates.
    """

    __tablename__ = "nft_tokens"
    __table_args__ = (
        UniqueConstraint(
            "contract_address", "token_id", name="uq_nft_tokens_contract_token"
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Identity (immutable)
    contract_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )
    token_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Current state
    owner_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )
    token_uri: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Transfer that produced owner_address
    last_transfer_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_transfer_tx_index: Mapped[int] = mapped_column(Integer, nullable=False)
    last_transfer_log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    last_transfer_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    # Refresh bookkeeping
    last_synced_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True
    )
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    enriched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<NftToken(token_id={self.token_id}, owner={self.owner_address}, "
            f"last_transfer_block={self.last_transfer_block})>"
        )

    @property
    def transfer_key(self) -> tuple[int, int, int]:
        """Ordering key of the transfer that set the current owner."""
        return (
            self.last_transfer_block,
            self.last_transfer_tx_index,
            self.last_transfer_log_index,
        )
