"""
Verifier.

Compares a random sample of stored tokens against live chain state and
checks aggregate counts.
"""

from loguru import logger

from nftsync.config.constants import COLLECTION_SIZE, ZERO_ADDRESS
from nftsync.services.nft_sync.chain_reader import ChainReader
from nftsync.services.nft_sync.token_store import TokenStore
from nftsync.services.nft_sync.types import (
    VerificationMismatchDetail,
    VerificationResult,
)
from nftsync.utils.exceptions import ChainUnavailable


class Verifier:
    """
    Sampled store vs chain comparison.

    Read-only: safe to run while the sync loop is writing.
    """

    def __init__(
        self,
        reader: ChainReader,
        store: TokenStore,
        expected_total_tokens: int = COLLECTION_SIZE,
    ) -> None:
        """
        Initialize verifier.

        Args:
            reader: Chain reader
            store: Token store
            expected_total_tokens: Collection size
        """
        self.reader = reader
        self.store = store
        self.expected_total_tokens = expected_total_tokens

    async def verify(self, sample_size: int) -> VerificationResult:
        """
        Verify a random sample of tokens.

        Args:
            sample_size: Number of tokens to compare

        Returns:
            VerificationResult with per-field mismatches and totals

        Raises:
            ChainUnavailable: If the head block cannot be read
        """
        result = VerificationResult(
            sample_size=sample_size,
            expected_total_tokens=self.expected_total_tokens,
        )
        result.block_number = await self.reader.get_head_block()

        logger.info(
            f"[Verifier] Verifying {sample_size} random tokens at block "
            f"{result.block_number}"
        )

        for token in await self.store.find_sample(sample_size):
            result.tokens_checked += 1
            try:
                chain_owner = await self.reader.owner_of(token.token_id)
                chain_uri = (
                    await self.reader.token_uri(token.token_id)
                    if token.token_uri is not None
                    else None
                )
            except ChainUnavailable as e:
                result.tokens_errored += 1
                logger.warning(f"[Verifier] Token {token.token_id} not checked: {e}")
                continue

            # Burned tokens revert on ownerOf and are stored with the zero owner
            stored_owner = (
                None if token.owner_address == ZERO_ADDRESS else token.owner_address
            )
            token_mismatches = []
            if chain_owner != stored_owner:
                token_mismatches.append(
                    VerificationMismatchDetail(
                        token_id=token.token_id,
                        field="owner",
                        expected=chain_owner,
                        actual=token.owner_address,
                        block_number=result.block_number,
                    )
                )
            if token.token_uri is not None and chain_uri != token.token_uri:
                token_mismatches.append(
                    VerificationMismatchDetail(
                        token_id=token.token_id,
                        field="token_uri",
                        expected=chain_uri,
                        actual=token.token_uri,
                        block_number=result.block_number,
                    )
                )

            if token_mismatches:
                result.tokens_mismatched += 1
                result.mismatches.extend(token_mismatches)
            else:
                result.tokens_matched += 1

        result.total_tokens_in_db = await self.store.count_tokens()
        result.total_transfers_in_db = await self.store.count_transfers()
        # Every token needs at least its mint
        result.transfers_below_floor = (
            result.total_transfers_in_db < result.total_tokens_in_db
        )
        result.passed = (
            result.tokens_mismatched == 0
            and result.total_tokens_in_db == result.expected_total_tokens
        )

        log = logger.success if result.passed else logger.warning
        log(
            f"[Verifier] {'PASSED' if result.passed else 'FAILED'}: "
            f"{result.tokens_matched}/{result.tokens_checked} matched, "
            f"{result.tokens_mismatched} mismatched, {result.tokens_errored} errored, "
            f"{result.total_tokens_in_db}/{result.expected_total_tokens} tokens, "
            f"{result.total_transfers_in_db} transfers"
        )
        if result.inconclusive:
            logger.warning(
                f"[Verifier] None of the {result.tokens_checked} sampled tokens "
                f"could be read from the chain, ownership was not compared"
            )
        for mismatch in result.mismatches[:10]:
            logger.warning(
                f"[Verifier] Token {mismatch.token_id} {mismatch.field}: "
                f"chain={mismatch.expected} store={mismatch.actual}"
            )
        return result
