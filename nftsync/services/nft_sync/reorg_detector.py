"""
Reorg Detector.

Remembers the hashes of blocks in the unconfirmed tail and compares
them against the chain. A mismatch means the chain reorganized and
every effect from the fork point onwards must be rolled back.
"""

from collections.abc import Iterable, Mapping
from typing import Protocol

from loguru import logger

from nftsync.services.nft_sync.types import (
    BlockHashMismatch,
    BlockRange,
    RawTransferLog,
    ReorgDetection,
)
from nftsync.utils.exceptions import ReorgDetected
from nftsync.utils.formatting import short_hash


class BlockHashSource(Protocol):
    """Anything that can fetch a block hash (the chain reader)."""

    async def get_block_hash(self, block_number: int) -> str | None: ...


class ReorgDetector:
    """
    In-memory ring of (block_number, block_hash) for the unconfirmed tail.

    The ring holds blocks in (finalized_to, current]. Rollback is
    conservative: when the first mismatching block has unrecorded
    blocks below it, the rollback starts right after the highest
    block still known to match, or right after the finalized cursor.
    """

    def __init__(self, confirmations: int, finalized_to: int = -1) -> None:
        """
        Initialize detector.

        Args:
            confirmations: Depth after which a block is final
            finalized_to: Highest final block
        """
        self.confirmations = confirmations
        self.finalized_to = finalized_to
        self.rollback_count = 0
        self._ring: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._ring)

    def __contains__(self, block_number: int) -> bool:
        return block_number in self._ring

    @property
    def blocks(self) -> list[int]:
        """Recorded block numbers, ascending."""
        return sorted(self._ring)

    def recorded_hash(self, block_number: int) -> str | None:
        """Hash recorded for a block, if any."""
        return self._ring.get(block_number)

    def unconfirmed_floor(self, head_block: int) -> int:
        """Highest block that is final for the given head."""
        return head_block - self.confirmations

    def record(self, block_number: int, block_hash: str) -> None:
        """
        Remember a block hash.

        Blocks at or below the finalized cursor are ignored.
        """
        if block_number <= self.finalized_to or not block_hash:
            return
        self._ring[block_number] = block_hash.lower()

    def record_many(self, hashes: Mapping[int, str | None]) -> None:
        """Remember several block hashes."""
        for block_number, block_hash in hashes.items():
            if block_hash:
                self.record(block_number, block_hash)

    def seed(self, hashes: Mapping[int, str], finalized_to: int) -> None:
        """
        Rebuild the ring after a restart.

        Args:
            hashes: Hashes stored with transfers in the unconfirmed tail
            finalized_to: Persisted finalized cursor
        """
        self._ring.clear()
        self.finalized_to = finalized_to
        self.record_many(hashes)
        logger.info(
            f"[Reorg] Seeded {len(self._ring)} block hashes above block {finalized_to}"
        )

    def discard_from(self, block_number: int) -> None:
        """Forget every block at or after ``block_number``."""
        for block in [b for b in self._ring if b >= block_number]:
            del self._ring[block]

    def prune(self, finalized_to: int) -> None:
        """Forget final blocks and move the finalized cursor."""
        self.finalized_to = max(self.finalized_to, finalized_to)
        for block in [b for b in self._ring if b <= self.finalized_to]:
            del self._ring[block]

    async def check(self, source: BlockHashSource) -> ReorgDetection:
        """
        Refetch every recorded hash and compare.

        Stops at the first mismatch: everything from there on is rolled
        back anyway.

        Args:
            source: Block hash source (chain reader)

        Returns:
            ReorgDetection; ``detected`` is False when all hashes match
        """
        if not self._ring:
            return ReorgDetection()

        for block_number in self.blocks:
            actual = await source.get_block_hash(block_number)
            expected = self._ring[block_number]
            if actual is None or actual.lower() != expected:
                return self._detection(
                    [BlockHashMismatch(block_number, expected, actual)]
                )

        logger.debug(f"[Reorg] {len(self._ring)} unconfirmed block hashes match")
        return ReorgDetection()

    def compare_logs(
        self,
        logs: Iterable[RawTransferLog],
        fresh_hashes: Mapping[int, str | None] | None = None,
    ) -> None:
        """
        Check a fetched batch against recorded and freshly fetched hashes.

        Args:
            logs: Logs of the batch
            fresh_hashes: Hashes fetched right before the logs

        Raises:
            ReorgDetected: If any log carries a hash that disagrees
        """
        fresh_hashes = fresh_hashes or {}
        mismatches: dict[int, BlockHashMismatch] = {}

        for log in logs:
            block_hash = log.block_hash.lower()
            recorded = self._ring.get(log.block_number)
            if recorded is not None and recorded != block_hash:
                mismatches.setdefault(
                    log.block_number,
                    BlockHashMismatch(log.block_number, recorded, block_hash),
                )
                continue

            fresh = fresh_hashes.get(log.block_number)
            if fresh is not None and fresh.lower() != block_hash:
                mismatches.setdefault(
                    log.block_number,
                    BlockHashMismatch(log.block_number, fresh.lower(), block_hash),
                )

        if mismatches:
            detection = self._detection(
                [mismatches[b] for b in sorted(mismatches)]
            )
            raise ReorgDetected(detection)

    def _detection(self, mismatched: list[BlockHashMismatch]) -> ReorgDetection:
        first_bad = mismatched[0].block_number

        # Highest recorded block below the mismatch; the scan of blocks
        # in between is unverified, so roll those back too
        matching_below = [b for b in self._ring if b < first_bad]
        if matching_below:
            rollback_from = max(matching_below) + 1
        else:
            rollback_from = self.finalized_to + 1
        rollback_from = max(min(rollback_from, first_bad), self.finalized_to + 1)

        last_block = max([first_bad, *self._ring])
        self.rollback_count += 1

        for mismatch in mismatched:
            logger.warning(
                f"[Reorg] Block {mismatch.block_number}: recorded "
                f"{short_hash(mismatch.expected_hash)}, chain "
                f"{short_hash(mismatch.actual_hash)}"
            )

        return ReorgDetection(
            detected=True,
            affected_block_range=BlockRange(rollback_from, last_block),
            mismatched_blocks=mismatched,
            action_taken="rollback",
            rollback_count=self.rollback_count,
        )
