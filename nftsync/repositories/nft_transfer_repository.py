"""
NFT Transfer repository.

Data access layer for the append-only Transfer log.
"""

from sqlalchemy import and_, delete, distinct, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from nftsync.models.nft_transfer import NftTransfer
from nftsync.repositories.base import BaseRepository


class NftTransferRepository(BaseRepository[NftTransfer]):
    """Repository for Transfer events."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(NftTransfer, session)

    async def get_by_identity(
        self, tx_hash: str, log_index: int
    ) -> NftTransfer | None:
        """
        Get transfer by its on-chain identity.

        Args:
            tx_hash: Transaction hash
            log_index: Log index inside the block

        Returns:
            Transfer or None
        """
        return await self.get_by(tx_hash=tx_hash.lower(), log_index=log_index)

    async def latest_for_token(
        self, contract_address: str, token_id: int
    ) -> NftTransfer | None:
        """
        Get the transfer that sorts last for a token.

        Args:
            contract_address: Collection contract
            token_id: Token ID

        Returns:
            Latest transfer by (block, tx_index, log_index) or None
        """
        stmt = (
            select(NftTransfer)
            .where(
                and_(
                    NftTransfer.contract_address == contract_address,
                    NftTransfer.token_id == token_id,
                )
            )
            .order_by(
                NftTransfer.block_number.desc(),
                NftTransfer.tx_index.desc(),
                NftTransfer.log_index.desc(),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def token_ids_from_block(
        self, contract_address: str, from_block: int
    ) -> list[int]:
        """Distinct token IDs touched at or after a block."""
        stmt = (
            select(distinct(NftTransfer.token_id))
            .where(
                and_(
                    NftTransfer.contract_address == contract_address,
                    NftTransfer.block_number >= from_block,
                )
            )
            .order_by(NftTransfer.token_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_from_block(
        self, contract_address: str, from_block: int
    ) -> int:
        """
        Delete every transfer at or after a block.

        Args:
            contract_address: Collection contract
            from_block: First retracted block

        Returns:
            Number of deleted rows
        """
        stmt = delete(NftTransfer).where(
            and_(
                NftTransfer.contract_address == contract_address,
                NftTransfer.block_number >= from_block,
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def block_hashes_between(
        self, contract_address: str, from_block: int, to_block: int
    ) -> dict[int, str]:
        """
        Get block hashes recorded with stored transfers.

        Args:
            contract_address: Collection contract
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Mapping block_number -> block_hash
        """
        stmt = (
            select(NftTransfer.block_number, NftTransfer.block_hash)
            .where(
                and_(
                    NftTransfer.contract_address == contract_address,
                    NftTransfer.block_number >= from_block,
                    NftTransfer.block_number <= to_block,
                )
            )
            .distinct()
            .order_by(NftTransfer.block_number)
        )
        result = await self.session.execute(stmt)
        return {row.block_number: row.block_hash for row in result.all()}

    async def count_for_contract(self, contract_address: str) -> int:
        """Count transfers of a contract."""
        return await self.count(contract_address=contract_address)

    async def get_token_transfers(
        self, contract_address: str, token_id: int, limit: int | None = None
    ) -> list[NftTransfer]:
        """
        Get transfer history of a token, oldest first.

        Args:
            contract_address: Collection contract
            token_id: Token ID
            limit: Max results

        Returns:
            List of transfers
        """
        stmt = (
            select(NftTransfer)
            .where(
                and_(
                    NftTransfer.contract_address == contract_address,
                    NftTransfer.token_id == token_id,
                )
            )
            .order_by(
                NftTransfer.block_number.asc(),
                NftTransfer.tx_index.asc(),
                NftTransfer.log_index.asc(),
            )
        )
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_wallet_transfers(
        self, contract_address: str, address: str, limit: int = 100
    ) -> list[NftTransfer]:
        """
        Get transfers involving a wallet, newest first.

        Args:
            contract_address: Collection contract
            address: Wallet address
            limit: Max results

        Returns:
            List of transfers
        """
        addr = address.lower()
        stmt = (
            select(NftTransfer)
            .where(
                and_(
                    NftTransfer.contract_address == contract_address,
                    or_(
                        NftTransfer.from_address == addr,
                        NftTransfer.to_address == addr,
                    ),
                )
            )
            .order_by(
                NftTransfer.block_number.desc(),
                NftTransfer.tx_index.desc(),
                NftTransfer.log_index.desc(),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
