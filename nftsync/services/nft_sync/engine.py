"""
NFT Sync Engine.

Drives the Transfer scan for one collection: pulls block ranges from the
chain reader, checks them against the reorg detector, applies them to
the token store and checkpoints progress after every batch.

Cursor convention: ``current_block`` is the last fully scanned block, so
the next batch is ``[current_block + 1, current_block + batch_size]``
clamped to the head.
"""

import asyncio
import os
import socket
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any, TypeVar

from loguru import logger

from nftsync.config.constants import PROGRESS_LOG_INTERVAL_SECONDS
from nftsync.services.nft_sync.chain_reader import ChainReader
from nftsync.services.nft_sync.enricher import TokenEnricher
from nftsync.services.nft_sync.reorg_detector import ReorgDetector
from nftsync.services.nft_sync.state_tracker import SyncStateTracker
from nftsync.services.nft_sync.token_store import TokenStore
from nftsync.services.nft_sync.types import (
    BatchApplyResult,
    CycleResult,
    RawTransferLog,
    ReorgDetection,
    SyncConfig,
    SyncPhase,
    SyncProgress,
    SyncState,
    SyncStatus,
    SyncStatusReport,
    SyncType,
    VerificationResult,
)
from nftsync.services.nft_sync.verifier import Verifier
from nftsync.utils.exceptions import (
    TRANSIENT_ERRORS,
    ConfigurationError,
    ReorgDetected,
    StoreWriteFailure,
    SyncAlreadyRunning,
    describe,
)
from nftsync.utils.formatting import format_duration, mask_address
from nftsync.utils.rpc_wrapper import call_with_retry

T = TypeVar("T")


def default_owner_id() -> str:
    """Lease owner id unique to this process."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class SyncEngine:
    """
    Orchestrates the sync loop for one contract and sync type.

    Phases: initializing -> scanning -> enriching -> finalizing, with
    verifying on demand. Transient failures are retried with backoff;
    once retries are exhausted the error is recorded in the sync state
    and the loop halts in ``error`` status without raising.
    """

    def __init__(
        self,
        config: SyncConfig,
        reader: ChainReader,
        store: TokenStore,
        tracker: SyncStateTracker,
        detector: ReorgDetector | None = None,
        verifier: Verifier | None = None,
        enricher: TokenEnricher | None = None,
        owner_id: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize sync engine.

        Args:
            config: Sync configuration snapshot
            reader: Chain reader
            store: Token store
            tracker: Sync state tracker
            detector: Reorg detector (created from config if None)
            verifier: Verifier (created if None)
            enricher: Token enricher (created if None)
            owner_id: Lease owner id (unique per process if None)
            sleep: Sleep used between retries (injectable for tests)
            clock: Monotonic clock for progress metrics
        """
        self.config = config
        self.reader = reader
        self.store = store
        self.tracker = tracker
        self.detector = detector or ReorgDetector(config.confirmations)
        self.verifier = verifier or Verifier(reader, store, config.collection_size)
        self.enricher = enricher or TokenEnricher(reader, store)
        self.owner_id = owner_id or default_owner_id()
        self._sleep = sleep
        self._clock = clock

        self.state: SyncState | None = None
        self.status = SyncStatus.IDLE
        self.phase = SyncPhase.INITIALIZING
        self.last_verification: VerificationResult | None = None

        self._stop_event = asyncio.Event()
        self._running = False
        self._lease_held = False
        self._pending_tail: tuple[int, int] | None = None
        self._retry_count = 0

        # Progress baseline
        self._progress_clock = clock()
        self._progress_block = 0
        self._progress_transfers = 0
        self._last_progress_log = 0.0

    @property
    def is_running(self) -> bool:
        """Check if the sync loop is active."""
        return self._running

    @property
    def stop_requested(self) -> bool:
        """Check if a stop was requested."""
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> SyncState:
        """
        Validate connections, claim the lease and load or create state.

        Returns:
            Loaded or newly created SyncState

        Raises:
            ConfigurationError: If the node reports an unexpected chain
            SyncAlreadyRunning: If another engine holds the lease
            ChainUnavailable: If the chain stays unreachable after retries
        """
        self.phase = SyncPhase.INITIALIZING
        contract = mask_address(self.config.contract_address)
        logger.info(
            f"[NFT Sync] Initializing {self.config.sync_type} sync for {contract}"
        )

        await self._validate_connections()

        acquired = await self._with_retry(
            lambda: self.tracker.acquire_lease(
                self.config.contract_address,
                self.config.sync_type,
                self.owner_id,
                self.config.lease_ttl_seconds,
            ),
            "Lease acquire",
        )
        if not acquired:
            raise SyncAlreadyRunning(
                f"Sync for {contract} ({self.config.sync_type}) "
                f"is owned by another process"
            )
        self._lease_held = True

        head = await self._with_retry(self.reader.get_head_block, "Get head block")
        state = await self.tracker.load(
            self.config.contract_address, self.config.sync_type
        )

        if state is None:
            state = await self._create_state(head)
        else:
            state.head_block = max(state.head_block, head)
            logger.info(
                f"[NFT Sync] Resuming from block {state.current_block} "
                f"(finalized to {state.finalized_to_block}, head {head})"
            )
            await self._restore_tail(state)

        self.state = state
        self._reset_progress_baseline()
        return state

    async def _validate_connections(self) -> None:
        if self.config.expected_chain_id is not None:
            chain_id = await self._with_retry(self.reader.get_chain_id, "Get chain ID")
            if chain_id != self.config.expected_chain_id:
                raise ConfigurationError(
                    f"Wrong network: expected chain {self.config.expected_chain_id}, "
                    f"node reports {chain_id}"
                )

        if await self._with_retry(self.reader.is_syncing, "Get node sync status"):
            logger.warning("[NFT Sync] RPC node is still syncing, head may lag")

        await self._with_retry(self.reader.get_contract_info, "Get contract info")
        await self._with_retry(self.store.ping, "Database ping")

    async def _create_state(self, head: int) -> SyncState:
        if self.config.from_block > 0:
            start_block = self.config.from_block
        elif self.config.sync_type == SyncType.INCREMENTAL:
            start_block = head
        else:
            start_block = await self._with_retry(
                lambda: self.reader.find_first_transfer_block(head),
                "Find first Transfer block",
            )

        state = SyncState(
            contract_address=self.config.contract_address,
            sync_type=self.config.sync_type,
            start_block=start_block,
            current_block=start_block - 1,
            finalized_to_block=start_block - 1,
            head_block=head,
            confirmations=self.config.confirmations,
            batch_size=self.config.batch_size,
        )
        self.detector.seed({}, state.finalized_to_block)
        await self._with_retry(lambda: self.tracker.save(state), "Save sync state")

        logger.info(
            f"[NFT Sync] Created sync state: blocks {start_block} -> {head} "
            f"({head - start_block + 1} blocks)"
        )
        return state

    async def _restore_tail(self, state: SyncState) -> None:
        """Seed the reorg ring and schedule a re-scan of the unconfirmed tail."""
        tail_from = state.finalized_to_block + 1
        tail_to = state.current_block
        hashes = await self._with_retry(
            lambda: self.store.block_hashes_between(tail_from, tail_to),
            "Load tail block hashes",
        )
        self.detector.seed(hashes, state.finalized_to_block)

        if tail_to >= tail_from:
            self._pending_tail = (tail_from, tail_to)
            logger.info(
                f"[NFT Sync] Unconfirmed tail {tail_from}-{tail_to} "
                f"will be re-scanned"
            )

    async def start_sync(self, follow: bool = True) -> SyncState:
        """
        Run sync cycles until stopped, paused or failed.

        Args:
            follow: Keep polling for new blocks once caught up

        Returns:
            Final SyncState

        Raises:
            SyncAlreadyRunning: If this engine is already looping
        """
        if self._running:
            raise SyncAlreadyRunning("Sync loop is already running")

        if self.state is None:
            await self.initialize()

        self._running = True
        self._stop_event.clear()
        self.status = SyncStatus.RUNNING
        self._reset_progress_baseline()

        try:
            while not self.stop_requested:
                cycle = await self.run_cycle()

                if self.status == SyncStatus.ERROR or cycle.stopped:
                    break

                if not follow:
                    if cycle.caught_up:
                        self.status = SyncStatus.COMPLETED
                    break

                await self._wait(self.config.poll_interval_seconds)
        except Exception as e:
            await self._record_failure(e)
            raise
        finally:
            self._running = False
            if self.status == SyncStatus.RUNNING:
                self.status = SyncStatus.IDLE

        return self.state

    def stop_sync(self) -> None:
        """Request a stop; honoured between batches."""
        if not self._stop_event.is_set():
            logger.info("[NFT Sync] Stop requested")
        self._stop_event.set()

    def pause(self) -> None:
        """Stop between batches and report ``paused``."""
        self.stop_sync()
        self.status = SyncStatus.PAUSED

    async def cleanup(self) -> None:
        """Stop the loop and release the lease and connections."""
        self.stop_sync()

        if self._lease_held:
            try:
                await self.tracker.release_lease(
                    self.config.contract_address, self.config.sync_type, self.owner_id
                )
            except StoreWriteFailure as e:
                logger.error(f"[NFT Sync] Lease release failed: {e}")
            self._lease_held = False

        await self.reader.close()
        await self.store.close()
        logger.info("[NFT Sync] Cleanup completed")

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """
        Run one cycle: reorg check, tail re-scan, scan, enrich, finalize.

        Returns:
            CycleResult; ``stopped`` is set on stop request or failure
        """
        if self.state is None:
            await self.initialize()
        state = self.state

        cycle = CycleResult(
            head_block=state.head_block,
            from_block=state.current_block + 1,
            to_block=state.current_block,
        )

        try:
            head = await self._with_retry(self.reader.get_head_block, "Get head block")
            state.head_block = head
            cycle.head_block = head

            detection = await self._with_retry(
                lambda: self.detector.check(self.reader), "Reorg check"
            )
            if detection.detected:
                await self._handle_reorg(detection)
                cycle.reorgs.append(detection)

            self.phase = SyncPhase.SCANNING
            if self._pending_tail is not None:
                await self._rescan_tail(head, cycle)

            while state.current_block < head:
                if self.stop_requested:
                    cycle.stopped = True
                    break
                batch_from = state.current_block + 1
                batch_to = min(state.current_block + self.config.batch_size, head)
                await self._run_batch(batch_from, batch_to, head, cycle)

            cycle.to_block = state.current_block

            if not cycle.stopped and self.config.enrich_batch_size > 0:
                self.phase = SyncPhase.ENRICHING
                enriched = await self._with_retry(
                    lambda: self.enricher.enrich_pending(self.config.enrich_batch_size),
                    "Token enrichment",
                )
                state.tokens_enriched += enriched
                cycle.tokens_enriched = enriched

            if not cycle.stopped:
                self.phase = SyncPhase.FINALIZING
                self._advance_finalized(head)
                if state.is_caught_up and state.completed_at is None:
                    await self._with_retry(
                        lambda: self.tracker.mark_completed(state), "Mark completed"
                    )
                    await self._renew_lease()
                else:
                    await self._save_state()

            if self.status == SyncStatus.ERROR:
                self.status = SyncStatus.RUNNING if self._running else SyncStatus.IDLE

        except TRANSIENT_ERRORS as e:
            await self._record_failure(e)
            cycle.stopped = True

        return cycle

    async def _rescan_tail(self, head: int, cycle: CycleResult) -> None:
        batch_from = self._pending_tail[0]
        while self._pending_tail is not None:
            # A rollback during the re-scan shortens the tail
            tail_to = min(self._pending_tail[1], self.state.current_block)
            if batch_from > tail_to:
                break
            batch_to = min(batch_from + self.config.batch_size - 1, tail_to)
            await self._run_batch(batch_from, batch_to, head, cycle)
            batch_from = batch_to + 1
        self._pending_tail = None

    async def _run_batch(
        self, batch_from: int, batch_to: int, head: int, cycle: CycleResult
    ) -> None:
        try:
            result = await self._with_retry(
                lambda: self._process_batch(batch_from, batch_to, head),
                f"Batch {batch_from}-{batch_to}",
            )
        except ReorgDetected as e:
            await self._handle_reorg(e.detection)
            cycle.reorgs.append(e.detection)
            # Let the node settle before fetching the range again
            await self._sleep(self.config.retry_delay_ms / 1000)
            return

        cycle.batches += 1
        cycle.from_block = min(cycle.from_block, batch_from)
        cycle.transfers_inserted += result.transfers_inserted
        cycle.tokens_created += result.tokens_created
        self._log_batch(batch_from, batch_to, result)

    async def _process_batch(
        self, batch_from: int, batch_to: int, head: int
    ) -> BatchApplyResult:
        """
        Fetch, check, apply and checkpoint one block range.

        Raises:
            ReorgDetected: If fetched logs disagree with known hashes
            ChainUnavailable: On RPC failure
            StoreWriteFailure: If the batch could not be written
        """
        state = self.state
        finality_floor = self.detector.unconfirmed_floor(head)

        # Hashes of unconfirmed blocks, fetched before the logs
        fresh_hashes: dict[int, str | None] = {}
        for block_number in range(max(batch_from, finality_floor + 1), batch_to + 1):
            fresh_hashes[block_number] = await self.reader.get_block_hash(block_number)

        logs = await self.reader.get_transfer_logs(batch_from, batch_to)
        self.detector.compare_logs(logs, fresh_hashes)
        logs = await self._with_timestamps(logs)

        result = await self.store.apply_transfers(logs)

        for log in logs:
            if log.block_number > finality_floor:
                fresh_hashes[log.block_number] = log.block_hash
        self.detector.record_many(fresh_hashes)

        if batch_to > state.current_block:
            state.current_block = batch_to
        state.transfers_processed += result.transfers_inserted
        state.tokens_discovered += result.tokens_created
        self._advance_finalized(head)

        await self._save_state()
        return result

    async def _with_timestamps(self, logs: list[RawTransferLog]) -> list[RawTransferLog]:
        timestamps: dict[int, int | None] = {}
        stamped = []
        for log in logs:
            if log.block_timestamp is not None:
                stamped.append(log)
                continue
            if log.block_number not in timestamps:
                timestamps[log.block_number] = await self.reader.get_block_timestamp(
                    log.block_number
                )
            stamped.append(replace(log, block_timestamp=timestamps[log.block_number]))
        return stamped

    async def _handle_reorg(self, detection: ReorgDetection) -> None:
        """Retract everything from the fork point and rewind the cursor."""
        state = self.state
        fork = detection.rollback_from
        logger.warning(
            f"[Reorg] Reorg detected in blocks "
            f"{detection.affected_block_range.from_block}-"
            f"{detection.affected_block_range.to_block}, rolling back from {fork}"
        )

        if fork <= state.current_block:
            rollback = await self._with_retry(
                lambda: self.store.rollback_from(fork), f"Rollback from {fork}"
            )
            state.transfers_processed = max(
                0, state.transfers_processed - rollback.transfers_removed
            )
            state.tokens_discovered = max(
                0, state.tokens_discovered - rollback.tokens_removed
            )
            state.tokens_enriched = max(
                0, state.tokens_enriched - rollback.enriched_removed
            )
            state.current_block = fork - 1

        self.detector.discard_from(fork)
        if self._pending_tail is not None:
            tail_from, tail_to = self._pending_tail
            tail_to = min(tail_to, state.current_block)
            self._pending_tail = (tail_from, tail_to) if tail_to >= tail_from else None

        await self._save_state()

    def _advance_finalized(self, head: int) -> None:
        state = self.state
        candidate = min(state.current_block, self.detector.unconfirmed_floor(head))
        if candidate > state.finalized_to_block:
            state.finalized_to_block = candidate
        self.detector.prune(state.finalized_to_block)

    async def _save_state(self) -> None:
        await self.tracker.save(self.state)
        await self._renew_lease()

    async def _renew_lease(self) -> None:
        renewed = await self.tracker.renew_lease(
            self.config.contract_address,
            self.config.sync_type,
            self.owner_id,
            self.config.lease_ttl_seconds,
        )
        if not renewed:
            self._lease_held = False
            raise SyncAlreadyRunning(
                f"Lease for {mask_address(self.config.contract_address)} "
                f"was taken over by another process"
            )

    async def _with_retry(
        self, factory: Callable[[], Awaitable[T]], operation: str
    ) -> T:
        attempts = 0

        async def attempt() -> T:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                self._retry_count += 1
            return await factory()

        return await call_with_retry(
            attempt,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_delay_ms / 1000,
            operation_name=f"[NFT Sync] {operation}",
            sleep=self._sleep,
        )

    async def _record_failure(self, exc: BaseException) -> None:
        self.status = SyncStatus.ERROR
        logger.error(f"[NFT Sync] Sync halted: {describe(exc)}")

        if self.state is None:
            return

        self.state.last_error = describe(exc)
        self.state.error_count += 1
        try:
            await self.tracker.save(self.state)
        except StoreWriteFailure as save_error:
            logger.error(f"[NFT Sync] Could not persist error state: {save_error}")

    async def _wait(self, seconds: float) -> None:
        """Sleep between cycles, waking early on stop."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self) -> SyncStatusReport:
        """
        Current state plus live counts from the store.

        Returns:
            SyncStatusReport
        """
        tokens_count = await self.store.count_tokens()
        transfers_count = await self.store.count_transfers()
        state = self.state

        return SyncStatusReport(
            contract_address=self.config.contract_address,
            sync_type=self.config.sync_type,
            status=self.status,
            phase=self.phase,
            is_running=self._running,
            last_finalized_block=state.finalized_to_block if state else 0,
            current_block=state.current_block if state else 0,
            head_block=state.head_block if state else 0,
            lag=state.lag if state else 0,
            tokens_count=tokens_count,
            transfers_count=transfers_count,
            state=state,
            progress=self.get_progress(),
        )

    def get_progress(self) -> SyncProgress | None:
        """
        Progress metrics computed from state deltas since the loop started.

        Returns:
            SyncProgress or None before initialization
        """
        state = self.state
        if state is None:
            return None

        elapsed = max(self._clock() - self._progress_clock, 0.0)
        blocks_processed = max(0, state.current_block - self._progress_block)
        transfers = max(0, state.transfers_processed - self._progress_transfers)
        blocks_remaining = max(0, state.head_block - state.current_block)

        blocks_per_second = blocks_processed / elapsed if elapsed > 0 else 0.0
        events_per_second = transfers / elapsed if elapsed > 0 else 0.0
        eta = blocks_remaining / blocks_per_second if blocks_per_second > 0 else 0.0

        return SyncProgress(
            status=self.status,
            phase=self.phase,
            start_block=state.start_block,
            current_block=state.current_block,
            head_block=state.head_block,
            finalized_to_block=state.finalized_to_block,
            blocks_processed=blocks_processed,
            blocks_remaining=blocks_remaining,
            blocks_per_second=blocks_per_second,
            estimated_time_remaining_seconds=eta,
            tokens_discovered=state.tokens_discovered,
            tokens_enriched=state.tokens_enriched,
            transfers_processed=state.transfers_processed,
            events_per_second=events_per_second,
            started_at=state.started_at,
            last_update_at=state.last_updated_at,
            error=state.last_error if self.status == SyncStatus.ERROR else None,
            retry_count=self._retry_count,
        )

    async def verify_sync(self, sample_size: int) -> VerificationResult:
        """
        Verify a random sample of tokens against the chain.

        Args:
            sample_size: Number of tokens to compare

        Returns:
            VerificationResult
        """
        previous_phase = self.phase
        self.phase = SyncPhase.VERIFYING
        try:
            result = await self._with_retry(
                lambda: self.verifier.verify(sample_size), "Verification"
            )
        finally:
            self.phase = previous_phase

        self.last_verification = result
        return result

    def _reset_progress_baseline(self) -> None:
        self._progress_clock = self._clock()
        self._last_progress_log = self._progress_clock
        if self.state is not None:
            self._progress_block = self.state.current_block
            self._progress_transfers = self.state.transfers_processed

    def _log_batch(
        self, batch_from: int, batch_to: int, result: BatchApplyResult
    ) -> None:
        state = self.state
        logger.info(
            f"[NFT Sync] Blocks {batch_from}-{batch_to}: "
            f"{result.transfers_inserted} new transfers, "
            f"{result.tokens_created} new tokens "
            f"(finalized to {state.finalized_to_block}, head {state.head_block})"
        )

        now = self._clock()
        if now - self._last_progress_log < PROGRESS_LOG_INTERVAL_SECONDS:
            return
        self._last_progress_log = now

        progress = self.get_progress()
        logger.info(
            f"[NFT Sync] Progress {progress.percent_complete:.1f}% | "
            f"{progress.blocks_per_second:.1f} blocks/s | "
            f"{progress.transfers_processed} transfers | "
            f"{progress.tokens_discovered} tokens | "
            f"ETA {format_duration(progress.estimated_time_remaining_seconds)}"
        )
