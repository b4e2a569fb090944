"""
NFT Token repository.

Data access layer for current token ownership.
"""

from sqlalchemy import and_, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nftsync.models.nft_token import NftToken
from nftsync.repositories.base import BaseRepository


class NftTokenRepository(BaseRepository[NftToken]):
    """Repository for token records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(NftToken, session)

    async def get_token(
        self, contract_address: str, token_id: int, for_update: bool = False
    ) -> NftToken | None:
        """
        Get token record.

        Args:
            contract_address: Collection contract
            token_id: Token ID
            for_update: Lock the row for the ownership update

        Returns:
            Token or None
        """
        return await self.get_by(
            for_update=for_update,
            contract_address=contract_address,
            token_id=token_id,
        )

    async def delete_token(self, contract_address: str, token_id: int) -> bool:
        """Delete a token record."""
        deleted = await self.delete_by(
            contract_address=contract_address, token_id=token_id
        )
        return deleted > 0

    async def count_for_contract(self, contract_address: str) -> int:
        """Count tokens of a contract."""
        return await self.count(contract_address=contract_address)

    async def sample(self, contract_address: str, size: int) -> list[NftToken]:
        """
        Pick random tokens.

        Args:
            contract_address: Collection contract
            size: Sample size

        Returns:
            Up to ``size`` tokens in random order
        """
        stmt = (
            select(NftToken)
            .where(NftToken.contract_address == contract_address)
            .order_by(func.random())
            .limit(size)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_unenriched(
        self, contract_address: str, limit: int
    ) -> list[NftToken]:
        """Tokens whose metadata URI was never fetched, lowest ID first."""
        stmt = (
            select(NftToken)
            .where(
                and_(
                    NftToken.contract_address == contract_address,
                    NftToken.enriched_at.is_(None),
                )
            )
            .order_by(NftToken.token_id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_owner(
        self, contract_address: str, owner_address: str
    ) -> list[NftToken]:
        """
        Get tokens held by a wallet.

        Args:
            contract_address: Collection contract
            owner_address: Wallet address

        Returns:
            Tokens ordered by ID
        """
        stmt = (
            select(NftToken)
            .where(
                and_(
                    NftToken.contract_address == contract_address,
                    NftToken.owner_address == owner_address.lower(),
                )
            )
            .order_by(NftToken.token_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_owner(
        self, contract_address: str, owner_address: str
    ) -> int:
        """Count tokens held by a wallet."""
        return await self.count(
            contract_address=contract_address,
            owner_address=owner_address.lower(),
        )

    async def count_holders(
        self, contract_address: str, exclude: tuple[str, ...] = ()
    ) -> int:
        """Count distinct owners, skipping the given addresses."""
        stmt = select(func.count(distinct(NftToken.owner_address))).where(
            NftToken.contract_address == contract_address
        )
        if exclude:
            stmt = stmt.where(NftToken.owner_address.not_in(exclude))
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def top_holders(
        self,
        contract_address: str,
        limit: int = 10,
        exclude: tuple[str, ...] = (),
    ) -> list[tuple[str, int]]:
        """
        Get wallets holding the most tokens.

        Args:
            contract_address: Collection contract
            limit: Max wallets
            exclude: Addresses left out (zero address, escrow)

        Returns:
            List of (owner_address, token_count), largest first
        """
        token_count = func.count(NftToken.id).label("token_count")
        stmt = (
            select(NftToken.owner_address, token_count)
            .where(NftToken.contract_address == contract_address)
            .group_by(NftToken.owner_address)
            .order_by(token_count.desc(), NftToken.owner_address)
            .limit(limit)
        )
        if exclude:
            stmt = stmt.where(NftToken.owner_address.not_in(exclude))
        result = await self.session.execute(stmt)
        return [(row.owner_address, row.token_count) for row in result.all()]
