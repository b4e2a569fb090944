"""
Token Enricher.

Fills in token metadata URIs for tokens discovered by the scan.
"""

from loguru import logger

from nftsync.services.nft_sync.chain_reader import ChainReader
from nftsync.services.nft_sync.token_store import TokenStore


class TokenEnricher:
    """Fetch tokenURI from the contract and cache it on the token record."""

    def __init__(self, reader: ChainReader, store: TokenStore) -> None:
        self.reader = reader
        self.store = store

    async def enrich_pending(self, limit: int) -> int:
        """
        Enrich tokens that were never enriched.

        A reverting tokenURI stores None but still marks the token as
        enriched so it is not retried on every cycle.

        Args:
            limit: Max tokens in this pass

        Returns:
            Number of tokens enriched
        """
        tokens = await self.store.find_unenriched(limit)
        if not tokens:
            return 0

        enriched = 0
        for token in tokens:
            uri = await self.reader.token_uri(token.token_id)
            if await self.store.set_token_uri(token.token_id, uri):
                enriched += 1

        logger.info(f"[NFT Sync] Enriched {enriched} tokens")
        return enriched

    async def enrich_token(self, token_id: int) -> bool:
        """
        Refresh metadata of a single token on demand.

        Args:
            token_id: Token ID

        Returns:
            True if the token exists in the store
        """
        uri = await self.reader.token_uri(token_id)
        updated = await self.store.set_token_uri(token_id, uri)
        if not updated:
            logger.warning(f"[NFT Sync] Token {token_id} not found for enrichment")
        return updated
