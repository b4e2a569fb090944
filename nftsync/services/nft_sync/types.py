"""
NFT Sync Types.

Data transfer objects shared by the chain reader, the token store,
the reorg detector, the verifier and the sync engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from nftsync.config.constants import (
    COLLECTION_SIZE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFIRMATIONS,
    DEFAULT_ENRICH_BATCH_SIZE,
    DEFAULT_LEASE_TTL_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_DELAY_MS,
)
from nftsync.utils.exceptions import ConfigurationError


class SyncType(StrEnum):
    """Kind of sync state row."""

    FULL = "full"  # From the deployment block
    INCREMENTAL = "incremental"  # From the head at creation time


class SyncStatus(StrEnum):
    """Lifecycle status of the engine."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETED = "completed"


class SyncPhase(StrEnum):
    """Current phase inside a sync cycle."""

    INITIALIZING = "initializing"
    SCANNING = "scanning"
    ENRICHING = "enriching"
    VERIFYING = "verifying"
    FINALIZING = "finalizing"


class OwnershipChange(StrEnum):
    """Outcome of an ownership upsert."""

    CREATED = "created"
    UPDATED = "updated"
    STALE = "stale"  # Older or duplicate transfer, ignored


@dataclass(frozen=True)
class SyncConfig:
    """Configuration snapshot consumed by the sync engine."""

    rpc_url: str
    contract_address: str
    database_url: str
    sync_type: SyncType = SyncType.FULL
    from_block: int = 0  # 0 = discover the first Transfer block
    confirmations: int = DEFAULT_CONFIRMATIONS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    collection_size: int = COLLECTION_SIZE
    enrich_batch_size: int = DEFAULT_ENRICH_BATCH_SIZE
    lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS
    expected_chain_id: int | None = None
    ws_url: str | None = None

    def __post_init__(self) -> None:
        """Reject missing connection info."""
        if not self.rpc_url:
            raise ConfigurationError("RPC URL is required")
        if not self.contract_address:
            raise ConfigurationError("Contract address is required")
        if not self.database_url:
            raise ConfigurationError("Database URL is required")
        if self.batch_size < 1:
            raise ConfigurationError("Batch size must be at least 1")
        if self.confirmations < 0:
            raise ConfigurationError("Confirmations cannot be negative")
        object.__setattr__(self, "contract_address", self.contract_address.lower())
        object.__setattr__(self, "sync_type", SyncType(self.sync_type))

    @classmethod
    def from_settings(cls, settings) -> SyncConfig:
        """
        Build config from application settings.

        Args:
            settings: nftsync.config.settings.Settings instance

        Returns:
            SyncConfig snapshot
        """
        return cls(
            rpc_url=settings.rpc_url,
            contract_address=settings.contract_address,
            database_url=settings.database_url,
            sync_type=SyncType(settings.sync_type),
            from_block=settings.sync_from_block,
            confirmations=settings.confirmations,
            batch_size=settings.sync_batch_size,
            max_retries=settings.max_retries,
            retry_delay_ms=settings.retry_delay_ms,
            poll_interval_seconds=settings.poll_interval_seconds,
            collection_size=settings.collection_size,
            enrich_batch_size=settings.enrich_batch_size,
            lease_ttl_seconds=settings.lease_ttl_seconds,
            expected_chain_id=settings.expected_chain_id,
            ws_url=settings.ws_url,
        )


@dataclass(frozen=True)
class RawTransferLog:
    """Decoded Transfer log as returned by the chain reader."""

    block_number: int
    block_hash: str
    tx_hash: str
    tx_index: int
    log_index: int
    from_address: str
    to_address: str
    token_id: int
    block_timestamp: int | None = None

    @property
    def sort_key(self) -> tuple[int, int, int]:
        """Chain ordering key."""
        return (self.block_number, self.tx_index, self.log_index)

    @property
    def ref(self) -> TransferRef:
        """Pointer to this transfer for ownership upserts."""
        return TransferRef(
            block_number=self.block_number,
            tx_index=self.tx_index,
            log_index=self.log_index,
            tx_hash=self.tx_hash,
        )


@dataclass(frozen=True)
class TransferRef:
    """Composite pointer to the transfer that produced an owner."""

    block_number: int
    tx_index: int
    log_index: int
    tx_hash: str

    @property
    def key(self) -> tuple[int, int, int]:
        """Ordering key compared against the token's last transfer."""
        return (self.block_number, self.tx_index, self.log_index)


@dataclass
class BatchApplyResult:
    """Counters produced by applying one batch of transfers."""

    transfers_inserted: int = 0
    transfers_duplicate: int = 0
    tokens_created: int = 0
    tokens_updated: int = 0
    ownership_stale: int = 0


@dataclass
class RollbackResult:
    """Effects retracted by a reorg rollback."""

    from_block: int
    transfers_removed: int = 0
    tokens_restored: int = 0
    tokens_removed: int = 0
    enriched_removed: int = 0


@dataclass
class SyncState:
    """Persisted progress checkpoint for a contract and sync type."""

    contract_address: str
    sync_type: SyncType
    start_block: int
    current_block: int  # Last fully scanned block
    finalized_to_block: int
    head_block: int
    confirmations: int
    batch_size: int
    tokens_discovered: int = 0
    tokens_enriched: int = 0
    transfers_processed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    last_error: str | None = None
    error_count: int = 0

    @property
    def is_caught_up(self) -> bool:
        """Check if every block up to the observed head was scanned."""
        return self.current_block >= self.head_block

    @property
    def lag(self) -> int:
        """Blocks between the head and the finalized cursor."""
        return max(0, self.head_block - self.finalized_to_block)


@dataclass
class SyncProgress:
    """Ephemeral progress metrics computed from state deltas."""

    status: SyncStatus
    phase: SyncPhase
    start_block: int
    current_block: int
    head_block: int
    finalized_to_block: int
    blocks_processed: int
    blocks_remaining: int
    blocks_per_second: float
    estimated_time_remaining_seconds: float
    tokens_discovered: int
    tokens_enriched: int
    transfers_processed: int
    events_per_second: float
    started_at: datetime
    last_update_at: datetime
    error: str | None = None
    retry_count: int = 0

    @property
    def percent_complete(self) -> float:
        """Scan completion relative to the range start..head."""
        total = self.head_block - self.start_block + 1
        if total <= 0:
            return 100.0
        done = self.current_block - self.start_block + 1
        return max(0.0, min(100.0, done / total * 100))


@dataclass
class VerificationMismatchDetail:
    """Single field disagreement between store and chain."""

    token_id: int
    field: str  # owner, token_uri
    expected: str | None  # Chain value
    actual: str | None  # Stored value
    block_number: int


@dataclass
class VerificationResult:
    """Outcome of a sampled store vs chain comparison."""

    sample_size: int
    expected_total_tokens: int
    block_number: int = 0
    tokens_checked: int = 0
    tokens_matched: int = 0
    tokens_mismatched: int = 0
    tokens_errored: int = 0
    mismatches: list[VerificationMismatchDetail] = field(default_factory=list)
    total_tokens_in_db: int = 0
    total_transfers_in_db: int = 0
    transfers_below_floor: bool = False
    passed: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def accuracy(self) -> float:
        """Share of checked tokens that matched."""
        if not self.tokens_checked:
            return 0.0
        return self.tokens_matched / self.tokens_checked

    @property
    def inconclusive(self) -> bool:
        """True when tokens were sampled but none could be compared."""
        return self.tokens_errored > 0 and self.tokens_errored == self.tokens_checked

    def raise_for_mismatch(self) -> None:
        """
        Raise if the verification did not pass.

        Raises:
            VerificationMismatch: When ``passed`` is False
        """
        if not self.passed:
            from nftsync.utils.exceptions import VerificationMismatch

            raise VerificationMismatch(self)


@dataclass(frozen=True)
class BlockRange:
    """Inclusive block range."""

    from_block: int
    to_block: int


@dataclass(frozen=True)
class BlockHashMismatch:
    """Recorded vs refetched hash of one block."""

    block_number: int
    expected_hash: str
    actual_hash: str | None


@dataclass
class ReorgDetection:
    """Result of comparing recorded hashes against the chain."""

    detected: bool = False
    affected_block_range: BlockRange = field(
        default_factory=lambda: BlockRange(0, 0)
    )
    mismatched_blocks: list[BlockHashMismatch] = field(default_factory=list)
    action_taken: str = "none"  # none, rollback, reprocess
    rollback_count: int = 0

    @property
    def rollback_from(self) -> int:
        """First block whose effects must be retracted."""
        return self.affected_block_range.from_block


@dataclass
class CycleResult:
    """Summary of one sync cycle."""

    head_block: int
    from_block: int
    to_block: int
    batches: int = 0
    transfers_inserted: int = 0
    tokens_created: int = 0
    tokens_enriched: int = 0
    reorgs: list[ReorgDetection] = field(default_factory=list)
    stopped: bool = False

    @property
    def caught_up(self) -> bool:
        """Check if the cycle reached the head."""
        return self.to_block >= self.head_block and not self.stopped


@dataclass
class SyncStatusReport:
    """Status snapshot for monitoring and the runner."""

    contract_address: str
    sync_type: SyncType
    status: SyncStatus
    phase: SyncPhase
    is_running: bool
    last_finalized_block: int
    current_block: int
    head_block: int
    lag: int
    tokens_count: int
    transfers_count: int
    state: SyncState | None = None
    progress: SyncProgress | None = None

    def as_dict(self) -> dict:
        """Plain dict for JSON responses."""
        return {
            "contract_address": self.contract_address,
            "sync_type": str(self.sync_type),
            "status": str(self.status),
            "phase": str(self.phase),
            "is_running": self.is_running,
            "last_finalized_block": self.last_finalized_block,
            "current_block": self.current_block,
            "head_block": self.head_block,
            "lag": self.lag,
            "tokens_count": self.tokens_count,
            "transfers_count": self.transfers_count,
            "last_error": self.state.last_error if self.state else None,
            "error_count": self.state.error_count if self.state else 0,
        }
