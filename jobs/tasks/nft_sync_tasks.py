"""
NFT Sync Background Tasks.

Dramatiq actors for the sync pipeline:
1. One sync cycle (enqueued every poll interval by jobs.scheduler)
2. Sampled verification (daily)
3. On-demand metadata refresh of a single token, triggered by the API layer

Each actor runs inside task_engine(), so no connection outlives its
event loop.
"""

import dramatiq
from loguru import logger

from jobs.async_runner import run_async, task_engine
from jobs.broker import settings
from nftsync.services.nft_sync.types import SyncStatus
from nftsync.utils.exceptions import SyncAlreadyRunning


@dramatiq.actor(max_retries=3, time_limit=600_000)  # 10 min timeout
def run_nft_sync_cycle() -> None:
    """Run one sync cycle for the configured collection."""
    result = run_async(_run_cycle_async())
    if result.get("error"):
        # Let the Retries middleware back off and try again
        raise RuntimeError(f"NFT sync cycle failed: {result['error']}")


async def _run_cycle_async() -> dict:
    """Async implementation of one sync cycle."""
    async with task_engine(settings) as engine:
        try:
            await engine.initialize()
        except SyncAlreadyRunning as e:
            logger.info(f"[NFT Sync Task] Skipped: {e}")
            return {"success": False, "skipped": True}
        cycle = await engine.run_cycle()

    result = {
        "success": engine.status != SyncStatus.ERROR,
        "from_block": cycle.from_block,
        "to_block": cycle.to_block,
        "head_block": cycle.head_block,
        "transfers": cycle.transfers_inserted,
        "tokens": cycle.tokens_created,
        "enriched": cycle.tokens_enriched,
        "reorgs": len(cycle.reorgs),
    }
    if engine.status == SyncStatus.ERROR:
        result["error"] = engine.state.last_error if engine.state else "unknown"
    elif cycle.transfers_inserted or cycle.reorgs:
        logger.info(
            f"[NFT Sync Task] Blocks {cycle.from_block}-{cycle.to_block}: "
            f"{cycle.transfers_inserted} transfers, {len(cycle.reorgs)} reorgs"
        )
    return result


@dramatiq.actor(max_retries=1, time_limit=900_000)  # 15 min timeout
def verify_nft_sync(sample_size: int | None = None) -> None:
    """Verify a random sample of tokens against the chain."""
    run_async(_verify_async(sample_size))


async def _verify_async(sample_size: int | None) -> dict:
    """Async implementation of verification."""
    async with task_engine(settings) as engine:
        result = await engine.verify_sync(
            sample_size or settings.verification_sample_size
        )

    if result.inconclusive:
        logger.warning(
            f"[NFT Sync Task] Verification inconclusive: none of the "
            f"{result.tokens_checked} sampled tokens could be read from the chain"
        )
    elif not result.passed:
        logger.warning(
            f"[NFT Sync Task] Verification failed: {result.tokens_mismatched} "
            f"mismatches, {result.total_tokens_in_db} tokens stored"
        )
    return {
        "passed": result.passed,
        "inconclusive": result.inconclusive,
        "checked": result.tokens_checked,
        "mismatched": result.tokens_mismatched,
        "errored": result.tokens_errored,
        "total_tokens": result.total_tokens_in_db,
        "total_transfers": result.total_transfers_in_db,
    }


@dramatiq.actor(max_retries=3, time_limit=60_000)  # 1 min timeout
def enrich_nft_token(token_id: int) -> None:
    """Refresh the metadata URI of one token."""
    run_async(_enrich_token_async(token_id))


async def _enrich_token_async(token_id: int) -> bool:
    """Async implementation of token enrichment."""
    async with task_engine(settings) as engine:
        return await engine.enricher.enrich_token(token_id)
