"""
Token Store.

Persistent mirror of token ownership and the Transfer log. Every write
is idempotent: replaying a batch after a crash converges to the same
rows, which is what makes resuming from the last checkpoint safe.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from nftsync.config.constants import KUSWAP_LISTING_WALLET, ZERO_ADDRESS
from nftsync.models.nft_token import NftToken
from nftsync.models.nft_transfer import NftTransfer
from nftsync.repositories.nft_token_repository import NftTokenRepository
from nftsync.repositories.nft_transfer_repository import NftTransferRepository
from nftsync.services.nft_sync.types import (
    BatchApplyResult,
    OwnershipChange,
    RawTransferLog,
    RollbackResult,
    TransferRef,
)
from nftsync.utils.exceptions import StoreWriteFailure


class TokenStore:
    """
    Token and Transfer persistence for one collection contract.

    Reads never raise StoreWriteFailure; writes wrap any SQLAlchemy
    error into it after rolling the transaction back.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        contract_address: str,
        db_engine: AsyncEngine | None = None,
    ) -> None:
        """
        Initialize token store.

        Args:
            session_maker: Async session factory
            contract_address: Collection contract (lowercased)
            db_engine: Engine disposed by close(), if owned by the store
        """
        self.session_maker = session_maker
        self.contract_address = contract_address.lower()
        self._db_engine = db_engine

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_transfer(self, event: RawTransferLog) -> bool:
        """
        Insert a Transfer event if absent.

        Args:
            event: Decoded Transfer log

        Returns:
            True if inserted, False if already stored
        """
        async with self.session_maker() as session:
            try:
                inserted = await self._insert_transfer(session, event)
                await session.commit()
                return inserted
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Transfer insert failed: {e}") from e

    async def upsert_ownership(
        self, token_id: int, owner: str, ref: TransferRef
    ) -> OwnershipChange:
        """
        Apply an ownership change if it sorts after the recorded one.

        Args:
            token_id: Token ID
            owner: New owner address
            ref: Transfer that produced the owner

        Returns:
            created, updated, or stale (no-op)
        """
        async with self.session_maker() as session:
            try:
                change = await self._apply_ownership(session, token_id, owner, ref)
                await session.commit()
                return change
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Ownership update failed: {e}") from e

    async def apply_transfers(
        self, events: Iterable[RawTransferLog]
    ) -> BatchApplyResult:
        """
        Apply a batch of transfers in one transaction.

        Each event is inserted into the Transfer log and then applied
        to its token, strictly in (block, tx_index, log_index) order.
        Nothing is written if any statement fails.

        Args:
            events: Decoded Transfer logs

        Returns:
            Batch counters

        Raises:
            StoreWriteFailure: If the transaction could not be committed
        """
        ordered = sorted(events, key=lambda e: e.sort_key)
        result = BatchApplyResult()
        if not ordered:
            return result

        async with self.session_maker() as session:
            try:
                for event in ordered:
                    if await self._insert_transfer(session, event):
                        result.transfers_inserted += 1
                    else:
                        result.transfers_duplicate += 1

                    change = await self._apply_ownership(
                        session, event.token_id, event.to_address, event.ref
                    )
                    if change == OwnershipChange.CREATED:
                        result.tokens_created += 1
                    elif change == OwnershipChange.UPDATED:
                        result.tokens_updated += 1
                    else:
                        result.ownership_stale += 1

                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(
                    f"[Store] Batch of {len(ordered)} transfers rolled back: {e}"
                )
                raise StoreWriteFailure(f"Batch write failed: {e}") from e

        return result

    async def rollback_from(self, from_block: int) -> RollbackResult:
        """
        Retract every effect of blocks at or after ``from_block``.

        Transfers in the range are deleted. Each affected token is
        restored to its latest remaining transfer, or deleted when none
        is left.

        Args:
            from_block: First retracted block

        Returns:
            Rollback counters
        """
        rollback = RollbackResult(from_block=from_block)

        async with self.session_maker() as session:
            try:
                transfers = NftTransferRepository(session)
                tokens = NftTokenRepository(session)

                token_ids = await transfers.token_ids_from_block(
                    self.contract_address, from_block
                )
                rollback.transfers_removed = await transfers.delete_from_block(
                    self.contract_address, from_block
                )

                for token_id in token_ids:
                    latest = await transfers.latest_for_token(
                        self.contract_address, token_id
                    )
                    token = await tokens.get_token(
                        self.contract_address, token_id, for_update=True
                    )
                    if token is None:
                        continue

                    if latest is None:
                        if token.enriched_at is not None:
                            rollback.enriched_removed += 1
                        await tokens.delete_token(self.contract_address, token_id)
                        rollback.tokens_removed += 1
                        continue

                    self._set_owner(token, latest.to_address, _ref_of(latest))
                    rollback.tokens_restored += 1

                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Rollback from {from_block} failed: {e}") from e

        logger.warning(
            f"[Store] Rolled back from block {from_block}: "
            f"{rollback.transfers_removed} transfers removed, "
            f"{rollback.tokens_restored} tokens restored, "
            f"{rollback.tokens_removed} tokens removed"
        )
        return rollback

    async def set_token_uri(self, token_id: int, token_uri: str | None) -> bool:
        """
        Store a token's metadata URI and mark it enriched.

        Args:
            token_id: Token ID
            token_uri: URI from the contract (None on revert)

        Returns:
            True if the token exists
        """
        async with self.session_maker() as session:
            try:
                token = await NftTokenRepository(session).get_token(
                    self.contract_address, token_id, for_update=True
                )
                if token is None:
                    return False
                token.token_uri = token_uri
                token.enriched_at = datetime.now(UTC)
                await session.commit()
                return True
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Token URI update failed: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_token(self, token_id: int) -> NftToken | None:
        """Get a token record."""
        async with self.session_maker() as session:
            return await NftTokenRepository(session).get_token(
                self.contract_address, token_id
            )

    async def count_tokens(self) -> int:
        """Count token records."""
        async with self.session_maker() as session:
            return await NftTokenRepository(session).count_for_contract(
                self.contract_address
            )

    async def count_transfers(self) -> int:
        """Count Transfer events."""
        async with self.session_maker() as session:
            return await NftTransferRepository(session).count_for_contract(
                self.contract_address
            )

    async def find_sample(self, size: int) -> list[NftToken]:
        """Pick up to ``size`` random tokens for verification."""
        if size <= 0:
            return []
        async with self.session_maker() as session:
            return await NftTokenRepository(session).sample(
                self.contract_address, size
            )

    async def find_unenriched(self, limit: int) -> list[NftToken]:
        """Tokens without fetched metadata."""
        if limit <= 0:
            return []
        async with self.session_maker() as session:
            return await NftTokenRepository(session).find_unenriched(
                self.contract_address, limit
            )

    async def block_hashes_between(
        self, from_block: int, to_block: int
    ) -> dict[int, str]:
        """
        Block hashes recorded with stored transfers.

        Args:
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Mapping block_number -> block_hash
        """
        if to_block < from_block:
            return {}
        async with self.session_maker() as session:
            return await NftTransferRepository(session).block_hashes_between(
                self.contract_address, from_block, to_block
            )

    async def find_by_owner(self, owner_address: str) -> list[NftToken]:
        """Tokens held by a wallet."""
        async with self.session_maker() as session:
            return await NftTokenRepository(session).find_by_owner(
                self.contract_address, owner_address
            )

    async def get_token_transfers(self, token_id: int) -> list[NftTransfer]:
        """Transfer history of a token, oldest first."""
        async with self.session_maker() as session:
            return await NftTransferRepository(session).get_token_transfers(
                self.contract_address, token_id
            )

    async def get_wallet_transfers(
        self, address: str, limit: int = 100
    ) -> list[NftTransfer]:
        """Transfers sent or received by a wallet, newest first."""
        async with self.session_maker() as session:
            return await NftTransferRepository(session).get_wallet_transfers(
                self.contract_address, address, limit
            )

    async def count_on_sale(
        self, listing_wallet: str = KUSWAP_LISTING_WALLET
    ) -> int:
        """Count tokens held by the marketplace escrow wallet."""
        async with self.session_maker() as session:
            return await NftTokenRepository(session).count_by_owner(
                self.contract_address, listing_wallet
            )

    async def holder_stats(
        self, listing_wallet: str = KUSWAP_LISTING_WALLET, top: int = 10
    ) -> dict:
        """
        Aggregate holder statistics.

        The zero address and the escrow wallet are not holders.

        Args:
            listing_wallet: Marketplace escrow wallet
            top: Number of top holders to return

        Returns:
            Dict with total_tokens, unique_holders, on_sale, top_holders
        """
        excluded = (ZERO_ADDRESS, listing_wallet.lower())
        async with self.session_maker() as session:
            tokens = NftTokenRepository(session)
            return {
                "total_tokens": await tokens.count_for_contract(
                    self.contract_address
                ),
                "unique_holders": await tokens.count_holders(
                    self.contract_address, exclude=excluded
                ),
                "on_sale": await tokens.count_by_owner(
                    self.contract_address, listing_wallet
                ),
                "top_holders": await tokens.top_holders(
                    self.contract_address, limit=top, exclude=excluded
                ),
            }

    async def ping(self) -> None:
        """
        Check database connectivity.

        Raises:
            StoreWriteFailure: If the database is unreachable
        """
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StoreWriteFailure(f"Database unreachable: {e}") from e

    async def close(self) -> None:
        """Dispose the database engine if the store owns it."""
        if self._db_engine is not None:
            await self._db_engine.dispose()
            self._db_engine = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _insert_transfer(
        self, session: AsyncSession, event: RawTransferLog
    ) -> bool:
        repo = NftTransferRepository(session)
        if await repo.get_by_identity(event.tx_hash, event.log_index):
            return False

        await repo.create(
            tx_hash=event.tx_hash.lower(),
            log_index=event.log_index,
            contract_address=self.contract_address,
            token_id=event.token_id,
            from_address=event.from_address.lower(),
            to_address=event.to_address.lower(),
            block_number=event.block_number,
            block_hash=event.block_hash.lower(),
            block_timestamp=event.block_timestamp,
            tx_index=event.tx_index,
        )
        return True

    async def _apply_ownership(
        self,
        session: AsyncSession,
        token_id: int,
        owner: str,
        ref: TransferRef,
    ) -> OwnershipChange:
        repo = NftTokenRepository(session)
        token = await repo.get_token(self.contract_address, token_id, for_update=True)

        if token is None:
            token = NftToken(contract_address=self.contract_address, token_id=token_id)
            self._set_owner(token, owner, ref)
            session.add(token)
            await session.flush()
            return OwnershipChange.CREATED

        # Monotonic: only a strictly later transfer may change the owner
        if ref.key <= token.transfer_key:
            return OwnershipChange.STALE

        self._set_owner(token, owner, ref)
        await session.flush()
        return OwnershipChange.UPDATED

    @staticmethod
    def _set_owner(token: NftToken, owner: str, ref: TransferRef) -> None:
        token.owner_address = owner.lower()
        token.last_transfer_block = ref.block_number
        token.last_transfer_tx_index = ref.tx_index
        token.last_transfer_log_index = ref.log_index
        token.last_transfer_tx_hash = ref.tx_hash.lower()
        token.last_synced_block = ref.block_number
        token.last_synced_at = datetime.now(UTC)


def _ref_of(transfer: NftTransfer) -> TransferRef:
    return TransferRef(
        block_number=transfer.block_number,
        tx_index=transfer.tx_index,
        log_index=transfer.log_index,
        tx_hash=transfer.tx_hash,
    )
