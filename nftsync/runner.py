"""
NFT Sync Runner.

Command line entry point: syncs the collection to the chain head,
prints status and verifies the result.

Exit codes:
    0 - synced and verification passed
    1 - verification failed or was inconclusive, or the sync halted
    2 - configuration error or another sync already running
"""

import argparse
import asyncio
import signal
import sys

from loguru import logger

from nftsync.config.logging import setup_logging
from nftsync.config.settings import get_settings
from nftsync.services.nft_sync.engine import SyncEngine
from nftsync.services.nft_sync.factory import build_sync_engine
from nftsync.services.nft_sync.types import SyncStatus, VerificationResult
from nftsync.utils.exceptions import (
    ConfigurationError,
    NFTSyncError,
    SyncAlreadyRunning,
)
from nftsync.utils.formatting import mask_address


def log_status(report) -> None:
    """Print a status report."""
    logger.info("=" * 60)
    logger.info(f"Contract:         {mask_address(report.contract_address)}")
    logger.info(f"Status:           {report.status} ({report.phase})")
    logger.info(f"Current block:    {report.current_block}")
    logger.info(f"Finalized block:  {report.last_finalized_block}")
    logger.info(f"Head block:       {report.head_block}")
    logger.info(f"Lag:              {report.lag} blocks")
    logger.info(f"Tokens:           {report.tokens_count}")
    logger.info(f"Transfers:        {report.transfers_count}")
    if report.state and report.state.last_error:
        logger.info(f"Last error:       {report.state.last_error}")
    logger.info("=" * 60)


def log_verification(result: VerificationResult) -> None:
    """Print a verification summary."""
    logger.info("=" * 60)
    logger.info(f"Verification at block {result.block_number}")
    logger.info(f"  Checked:    {result.tokens_checked}/{result.sample_size}")
    logger.info(f"  Matched:    {result.tokens_matched}")
    logger.info(f"  Mismatched: {result.tokens_mismatched}")
    logger.info(f"  Errored:    {result.tokens_errored}")
    logger.info(
        f"  Tokens:     {result.total_tokens_in_db}/{result.expected_total_tokens}"
    )
    logger.info(f"  Transfers:  {result.total_transfers_in_db}")
    if result.transfers_below_floor:
        logger.warning("  Fewer transfers than tokens stored")
    if result.inconclusive:
        logger.warning("  No sampled token could be read from the chain")
    logger.info(f"  Result:     {'PASSED' if result.passed else 'FAILED'}")
    logger.info("=" * 60)


def verification_exit_code(result: VerificationResult) -> int:
    """0 only when verification passed and actually compared tokens."""
    return 0 if result.passed and not result.inconclusive else 1


def install_signal_handlers(engine: SyncEngine) -> None:
    """Request a graceful stop on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.stop_sync)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: engine.stop_sync())


async def run(
    follow: bool = False,
    verify_only: bool = False,
    sample_size: int | None = None,
    health_port: int | None = None,
) -> int:
    """
    Run the sync and return the process exit code.

    Args:
        follow: Keep polling for new blocks after catching up
        verify_only: Skip syncing, only verify
        sample_size: Verification sample size (settings default if None)
        health_port: Start the health server on this port

    Returns:
        Exit code
    """
    try:
        settings = get_settings()
        engine = build_sync_engine(settings)
    except (ConfigurationError, ValueError) as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2

    sample_size = sample_size or settings.verification_sample_size
    logger.info("🚀 NFT Sync Runner")
    logger.info(f"  Contract:      {mask_address(engine.config.contract_address)}")
    logger.info(f"  Sync type:     {engine.config.sync_type}")
    logger.info(f"  Confirmations: {engine.config.confirmations}")
    logger.info(f"  Batch size:    {engine.config.batch_size}")
    logger.info(
        f"  Rate limits:   {settings.max_requests_per_second} req/s, "
        f"{settings.max_blocks_per_second} blocks/s"
    )

    health_runner = None
    try:
        if health_port:
            from jobs.health import set_engine, start_health_server

            set_engine(engine)
            health_runner, _ = await start_health_server(port=health_port)

        install_signal_handlers(engine)
        await engine.initialize()
        log_status(await engine.get_status())

        status = await engine.get_status()
        already_synced = (
            status.lag <= engine.config.confirmations
            and status.tokens_count == engine.config.collection_size
        )
        if verify_only or (already_synced and not follow):
            if already_synced:
                logger.info("✅ Already synced, verifying")
            result = await engine.verify_sync(sample_size)
            log_verification(result)
            return verification_exit_code(result)

        await engine.start_sync(follow=follow)

        log_status(await engine.get_status())
        if engine.status == SyncStatus.ERROR:
            logger.error("❌ Sync halted with an error")
            return 1

        result = await engine.verify_sync(sample_size)
        log_verification(result)
        return verification_exit_code(result)

    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2
    except SyncAlreadyRunning as e:
        logger.error(f"❌ {e}")
        return 2
    except NFTSyncError as e:
        logger.error(f"❌ Sync failed: {e}")
        return 1
    finally:
        if health_runner is not None:
            from jobs.health import stop_health_server

            await stop_health_server(health_runner)
        await engine.cleanup()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Sync NFT Transfer history into the database"
    )
    parser.add_argument(
        "--follow",
        action="store_true",
        help="Keep following new blocks after catching up",
    )
    parser.add_argument(
        "--verify-only",
        action="store_true",
        help="Only verify the stored data against the chain",
    )
    parser.add_argument(
        "--sample-size",
        type=int,
        default=None,
        help="Number of random tokens to verify",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Serve /health, /readiness and /liveness on this port",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL",
    )

    args = parser.parse_args()

    setup_logging(args.log_level or "INFO")

    exit_code = asyncio.run(
        run(
            follow=args.follow,
            verify_only=args.verify_only,
            sample_size=args.sample_size,
            health_port=args.health_port,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
