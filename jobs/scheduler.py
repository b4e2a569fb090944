"""
Task scheduler.

Enqueues the sync actors on a fixed cadence:
1. One sync cycle every poll interval (coalesced, never overlapping)
2. Sampled verification once a day

Run with: python -m jobs.scheduler
"""

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from nftsync.config.constants import VERIFICATION_HOUR_UTC
from nftsync.config.logging import setup_logging
from nftsync.config.settings import Settings, get_settings


def create_scheduler(settings: Settings) -> AsyncIOScheduler:
    """
    Build the scheduler with all sync jobs registered.

    Args:
        settings: Application settings

    Returns:
        Scheduler (not started)
    """
    from jobs.tasks.nft_sync_tasks import run_nft_sync_cycle, verify_nft_sync

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_nft_sync_cycle.send,
        IntervalTrigger(seconds=settings.poll_interval_seconds),
        id="nft_sync_cycle",
        name="NFT sync cycle",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        verify_nft_sync.send,
        CronTrigger(hour=VERIFICATION_HOUR_UTC, minute=0),
        id="nft_sync_verify",
        name="NFT sync verification",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


async def main() -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings.log_level)

    scheduler = create_scheduler(settings)
    scheduler.start()
    logger.info(
        f"Scheduler started: sync cycle every {settings.poll_interval_seconds}s, "
        f"verification daily at {VERIFICATION_HOUR_UTC:02d}:00 UTC"
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop.set())

    try:
        await stop.wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
